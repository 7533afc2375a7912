"""
Status and severity normalization, business sort order, and KPI counts.

Upstream data is inconsistent about case and spelling ("COMPLETED", "Done",
"crit"), so every classification goes through the small enums below.
Unrecognized values fall back to "pending" / "info" rather than raising.

Time-dependent rules (overdue) take an explicit ``as_of`` instant; nothing
here reads the clock.
"""

import math
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

COMPLETED = "completed"
PENDING = "pending"
OVERDUE = "overdue"

SEVERITY_LEVELS = ("critical", "high", "medium", "low", "info")

_CONTROL_COMPLETED = frozenset({"completed", "done", "verified"})
_ATTESTATION_COMPLETED = frozenset({"completed", "signed", "verified"})

_SEVERITY_ALIASES = {
    "critical": "critical",
    "crit": "critical",
    "high": "high",
    "h": "high",
    "medium": "medium",
    "med": "medium",
    "m": "medium",
    "low": "low",
    "l": "low",
}

FILTER_LABELS = {
    "status": "Status",
    "risk_level": "Risk Level",
    "assigned_to": "Assigned To",
    "job_type": "Job Type",
    "job_id": "Job",
    "overdue_only": "Overdue Only",
    "high_severity_only": "High Severity Only",
    "pending_only": "Pending Only",
}


def _key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def normalize_control_status(status: Optional[str]) -> str:
    return COMPLETED if _key(status) in _CONTROL_COMPLETED else PENDING


def normalize_attestation_status(status: Optional[str]) -> str:
    return COMPLETED if _key(status) in _ATTESTATION_COMPLETED else PENDING


def normalize_severity(severity: Optional[str]) -> str:
    return _SEVERITY_ALIASES.get(_key(severity), "info")


def is_high_severity(severity: Optional[str]) -> bool:
    return normalize_severity(severity) in ("critical", "high")


def is_overdue(status: Optional[str], due_date: Optional[datetime], as_of: datetime) -> bool:
    """A control is overdue when it is not completed and its due date has passed."""
    if due_date is None:
        return False
    return normalize_control_status(status) != COMPLETED and due_date < as_of


def control_display_status(row: Any, as_of: datetime) -> str:
    """completed / overdue / pending, as shown in exported documents."""
    status = normalize_control_status(row.status)
    if status == PENDING and is_overdue(row.status, row.due_date, as_of):
        return OVERDUE
    return status


def _ts(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else math.inf


def sort_controls(rows: Sequence[Any], as_of: datetime) -> List[Any]:
    """
    Order controls for export.

    Overdue first, then high/critical severity, then ascending due date
    (missing due dates last). Control id breaks remaining ties so the
    order is total and stable across runs.
    """
    def key(row):
        return (
            0 if is_overdue(row.status, row.due_date, as_of) else 1,
            0 if is_high_severity(row.severity) else 1,
            _ts(row.due_date),
            row.id,
        )
    return sorted(rows, key=key)


def sort_attestations(rows: Sequence[Any]) -> List[Any]:
    """Pending before completed, then most recent attestation first."""
    def key(row):
        at = row.attested_at
        return (
            0 if normalize_attestation_status(row.status) == PENDING else 1,
            0 if at is not None else 1,
            -at.timestamp() if at is not None else 0.0,
            row.id,
        )
    return sorted(rows, key=key)


def compute_kpis(controls: Sequence[Any], as_of: datetime) -> Dict[str, int]:
    """Counts shown in the controls extract summary line."""
    completed = sum(1 for c in controls if normalize_control_status(c.status) == COMPLETED)
    overdue = sum(1 for c in controls if is_overdue(c.status, c.due_date, as_of))
    high = sum(1 for c in controls if is_high_severity(c.severity))
    return {
        "total": len(controls),
        "completed": completed,
        "pending": len(controls) - completed,
        "overdue": overdue,
        "high_severity": high,
    }


def format_filter_context(filters: Optional[Mapping[str, Any]]) -> List[str]:
    """
    Render active filters as "Label: value" lines.

    Boolean flags appear only when set. An empty filter set renders as a
    single "No filters applied" line.
    """
    lines = []
    for name in sorted((filters or {}).keys()):
        value = filters[name]
        if value is None or value is False or value == "":
            continue
        label = FILTER_LABELS.get(name, name.replace("_", " ").title())
        lines.append(label if value is True else f"{label}: {value}")
    return lines or ["No filters applied"]

"""
CSV extracts for controls and attestations.

Layout of every file:

    # <metadata line>            (one or more)
    <column header row>          (exactly one)
    <data row>                   (zero or more)
    # No records for this filter (only when there are no data rows)

Metadata never includes the pack id or generation time, so two packs over
unchanged data produce byte-identical CSVs.
"""

import csv
import io
from typing import Any, Dict, Iterable, List, Sequence

from .context import GenerationContext, format_date, format_ts
from .documents import ATTESTATIONS, CONTROLS, NO_RECORDS_MARKER, GeneratedDocument, GenerationError
from .normalize import (
    COMPLETED,
    OVERDUE,
    PENDING,
    compute_kpis,
    control_display_status,
    format_filter_context,
    is_high_severity,
    normalize_attestation_status,
    normalize_severity,
    sort_attestations,
    sort_controls,
)
from .rows import AttestationRow, ControlRow, RowValidationError, coerce_rows
from .sanitize import ForbiddenCharactersError, safe_text

CONTROL_COLUMNS = ["Control ID", "Title", "Status", "Severity", "Owner", "Due Date", "Last Updated"]
ATTESTATION_COLUMNS = ["Attestation ID", "Title", "Status", "Attested By", "Attested At", "Work Record"]


def _dedupe(rows: Iterable[Any]) -> List[Any]:
    seen = set()
    out = []
    for row in rows:
        if row.id in seen:
            continue
        seen.add(row.id)
        out.append(row)
    return out


def select_controls(rows: Sequence[ControlRow], ctx: GenerationContext) -> List[ControlRow]:
    """Apply status/severity filters. Pending includes overdue."""
    f = ctx.filters
    selected = []
    for row in _dedupe(rows):
        status = control_display_status(row, ctx.as_of)
        if f.status == COMPLETED and status != COMPLETED:
            continue
        if f.status == PENDING and status == COMPLETED:
            continue
        if (f.status == OVERDUE or f.overdue_only) and status != OVERDUE:
            continue
        if f.pending_only and status == COMPLETED:
            continue
        if f.risk_level and normalize_severity(row.severity) != f.risk_level:
            continue
        if f.high_severity_only and not is_high_severity(row.severity):
            continue
        selected.append(row)
    return sort_controls(selected, ctx.as_of)


def select_attestations(rows: Sequence[AttestationRow], ctx: GenerationContext) -> List[AttestationRow]:
    """Only completed/pending filters apply; attestations carry no due date or severity."""
    f = ctx.filters
    selected = []
    for row in _dedupe(rows):
        status = normalize_attestation_status(row.status)
        if f.status in (COMPLETED, PENDING) and status != f.status:
            continue
        if f.pending_only and status != PENDING:
            continue
        selected.append(row)
    return sort_attestations(selected)


def _metadata(title: str, ctx: GenerationContext) -> List[str]:
    strict = ctx.config.strict
    return [
        f"# {safe_text(ctx.config.brand, 'brand', strict)} {title}",
        f"# Organization: {safe_text(ctx.organization_name, 'organization', strict)}",
        f"# Time Range: {ctx.time_range.label}",
        "# Filters: " + "; ".join(safe_text(s, 'filters', strict) for s in format_filter_context(ctx.filters.to_dict())),
    ]


def _summary_line(kpis: Dict[str, int]) -> str:
    return (
        f"# Summary: {kpis['total']} total, {kpis['completed']} completed, "
        f"{kpis['pending']} pending, {kpis['overdue']} overdue, "
        f"{kpis['high_severity']} high severity"
    )


def _render(
    title: str,
    columns: List[str],
    records: List[List[str]],
    ctx: GenerationContext,
    extra: Sequence[str] = (),
) -> bytes:
    buf = io.StringIO()
    for line in _metadata(title, ctx) + list(extra):
        buf.write(line + "\n")
    writer = csv.writer(buf, lineterminator="\n")
    # a data row must never read as a metadata line
    quoted = csv.writer(buf, lineterminator="\n", quoting=csv.QUOTE_ALL)
    writer.writerow(columns)
    for record in records:
        (quoted if record[0].startswith("#") else writer).writerow(record)
    if not records:
        buf.write(f"# {NO_RECORDS_MARKER}\n")
    return buf.getvalue().encode("utf-8")


def generate_controls_csv(rows: Iterable[Any], ctx: GenerationContext) -> GeneratedDocument:
    """
    Controls extract, one data row per control.

    Raises:
        GenerationError: on invalid rows or forbidden characters (strict mode)
    """
    try:
        typed = coerce_rows(rows, ControlRow)
        strict = ctx.config.strict
        selected = select_controls(typed, ctx)
        records = []
        for row in selected:
            records.append([
                safe_text(row.id, "control.id", strict),
                safe_text(row.title, "control.title", strict),
                control_display_status(row, ctx.as_of),
                normalize_severity(row.severity),
                safe_text(row.owner, "control.owner", strict),
                format_date(row.due_date),
                format_ts(row.updated_at),
            ])
        data = _render(
            "Controls Export", CONTROL_COLUMNS, records, ctx,
            extra=[_summary_line(compute_kpis(selected, ctx.as_of))],
        )
    except (RowValidationError, ForbiddenCharactersError) as e:
        raise GenerationError(CONTROLS, str(e), e) from e
    return GeneratedDocument(kind=CONTROLS, type="csv", data=data, record_count=len(records))


def generate_attestations_csv(rows: Iterable[Any], ctx: GenerationContext) -> GeneratedDocument:
    """Attestations extract, pending first then newest first."""
    try:
        typed = coerce_rows(rows, AttestationRow)
        strict = ctx.config.strict
        records = []
        for row in select_attestations(typed, ctx):
            records.append([
                safe_text(row.id, "attestation.id", strict),
                safe_text(row.title, "attestation.title", strict),
                normalize_attestation_status(row.status),
                safe_text(row.attested_by, "attestation.attested_by", strict),
                format_ts(row.attested_at),
                safe_text(row.job_id, "attestation.job_id", strict),
            ])
        data = _render("Attestations Export", ATTESTATION_COLUMNS, records, ctx)
    except (RowValidationError, ForbiddenCharactersError) as e:
        raise GenerationError(ATTESTATIONS, str(e), e) from e
    return GeneratedDocument(kind=ATTESTATIONS, type="csv", data=data, record_count=len(records))


def count_data_rows(data: bytes) -> int:
    """
    Number of data rows in a CSV produced by this module.

    Metadata lines are the unquoted lines starting with "#"; everything else
    is the header row followed by data rows.
    """
    lines = [l for l in data.decode("utf-8").split("\n") if not l.startswith("#")]
    records = [r for r in csv.reader(lines) if r]
    return max(0, len(records) - 1)

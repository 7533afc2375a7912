"""
Report run lifecycle.

    draft --> ready_for_signatures --> final

Draft and ready runs accept artifacts. Signatures are collected only while
ready. A final run is immutable: every write is rejected, never queued.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .hashing import canonical_hash, sha256_hex


class RunStatus(str, Enum):
    DRAFT = "draft"
    READY_FOR_SIGNATURES = "ready_for_signatures"
    FINAL = "final"


TRANSITIONS = {
    RunStatus.DRAFT: frozenset({RunStatus.READY_FOR_SIGNATURES}),
    RunStatus.READY_FOR_SIGNATURES: frozenset({RunStatus.FINAL}),
    RunStatus.FINAL: frozenset(),
}

REQUIRED_ROLES = ("prepared_by", "reviewed_by", "approved_by")
SIGNATURE_ROLES = REQUIRED_ROLES + ("other",)


class RunStateError(Exception):
    """Base class for lifecycle violations."""
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, run_id: str, status: RunStatus, message: str):
        self.run_id = run_id
        self.status = status
        super().__init__(message)


class RunImmutableError(RunStateError):
    """Raised for any write against a final run."""
    code = "RUN_IMMUTABLE"

    def __init__(self, run_id: str, action: str):
        super().__init__(run_id, RunStatus.FINAL, f"run {run_id} is final; cannot {action}")


class InvalidTransitionError(RunStateError):
    """Raised when an action is not allowed in the run's current state."""

    def __init__(self, run_id: str, status: RunStatus, message: str):
        super().__init__(run_id, status, message)


def _status(value: Any) -> RunStatus:
    return value if isinstance(value, RunStatus) else RunStatus(value)


def check_transition(run_id: str, current: Any, target: Any) -> RunStatus:
    """
    Validate a status change.

    Returns:
        The target status

    Raises:
        RunImmutableError: if the run is already final
        InvalidTransitionError: for any other disallowed move
    """
    current, target = _status(current), _status(target)
    if current is RunStatus.FINAL:
        raise RunImmutableError(run_id, f"move to {target.value}")
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(run_id, current, f"cannot move run from {current.value} to {target.value}")
    return target


def check_accepts_artifacts(run_id: str, current: Any) -> None:
    if _status(current) is RunStatus.FINAL:
        raise RunImmutableError(run_id, "attach artifacts")


def check_accepts_signatures(run_id: str, current: Any) -> None:
    current = _status(current)
    if current is RunStatus.FINAL:
        raise RunImmutableError(run_id, "add signatures")
    if current is not RunStatus.READY_FOR_SIGNATURES:
        raise InvalidTransitionError(run_id, current, "signatures are collected only when ready_for_signatures")


def signature_hash(signature_svg: str, signer_name: str, signer_title: str, role: str) -> str:
    """Hash binding a signature image to the signer and the role signed for."""
    return sha256_hex(f"{signature_svg}{signer_name}{signer_title}{role}")


def missing_roles(signatures: Iterable[Mapping[str, Any]]) -> List[str]:
    """Required roles without an active (non-revoked) signature."""
    signed = {s.get("signature_role") for s in signatures if not s.get("revoked_at")}
    return [r for r in REQUIRED_ROLES if r not in signed]


def check_finalizable(run_id: str, current: Any, signatures: Sequence[Mapping[str, Any]]) -> None:
    check_transition(run_id, current, RunStatus.FINAL)
    missing = missing_roles(signatures)
    if missing:
        raise InvalidTransitionError(
            run_id, _status(current), f"missing required signatures: {', '.join(missing)}"
        )


def build_report_payload(
    job: Mapping[str, Any],
    controls: Sequence[Mapping[str, Any]],
    attestations: Sequence[Mapping[str, Any]],
) -> Dict[str, Any]:
    """
    Snapshot of a job's report data.

    Rows are ordered by id so the payload, and therefore its hash, does
    not depend on query order.
    """
    def pick(row, keys):
        return {k: row.get(k) for k in keys}

    return {
        "job": pick(job, ("id", "organization_id", "title", "job_type", "status", "created_at")),
        "controls": [
            pick(c, ("id", "title", "status", "severity", "owner", "due_date", "updated_at"))
            for c in sorted(controls, key=lambda c: c["id"])
        ],
        "attestations": [
            pick(a, ("id", "title", "status", "attested_by", "attested_at"))
            for a in sorted(attestations, key=lambda a: a["id"])
        ],
    }


def report_data_hash(payload: Mapping[str, Any]) -> str:
    return canonical_hash(dict(payload))


def verify_signatures(signatures: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Recompute each active signature's hash against what was stored."""
    out = []
    for s in signatures:
        if s.get("revoked_at"):
            continue
        recomputed = signature_hash(
            s.get("signature_svg") or "",
            s.get("signer_name") or "",
            s.get("signer_title") or "",
            s.get("signature_role") or "",
        )
        out.append({
            "signature_id": s.get("id"),
            "role": s.get("signature_role"),
            "valid": recomputed == s.get("signature_hash"),
        })
    return out
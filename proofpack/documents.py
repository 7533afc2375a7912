"""
Shared types for document generators.
"""

from dataclasses import dataclass
from typing import Optional

# Logical document kinds and the manifest summary key each one feeds
CONTROLS = "controls"
ATTESTATIONS = "attestations"
LEDGER_EVENTS = "ledger_events"
EVIDENCE_INDEX = "evidence_index"

SUMMARY_KINDS = (CONTROLS, ATTESTATIONS, LEDGER_EVENTS)

NO_RECORDS_MARKER = "No records for this filter"


class GenerationError(Exception):
    """Raised when a document cannot be produced. Aborts the whole pack."""

    def __init__(self, kind: str, message: str, cause: Optional[BaseException] = None):
        self.kind = kind
        self.cause = cause
        super().__init__(f"{kind}: {message}")


@dataclass(frozen=True)
class GeneratedDocument:
    """Output of a single generator call."""
    kind: str
    type: str  # pdf | csv | json
    data: bytes
    record_count: int

    @property
    def byte_length(self) -> int:
        return len(self.data)

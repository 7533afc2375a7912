"""
Typed row schemas for the document generators.

Rows arrive from the query layer as loosely shaped dicts. Each document type
has its own tagged schema; rows are validated once when they enter a
generator and everything downstream works on the typed models.
"""

from datetime import date, datetime, timezone
from typing import Annotated, Any, Iterable, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator


class RowValidationError(ValueError):
    """Raised when an input row does not match its document schema."""

    def __init__(self, kind: str, index: int, detail: str):
        self.kind = kind
        self.index = index
        super().__init__(f"{kind} row {index}: {detail}")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime into an aware UTC datetime.

    Naive values are taken as UTC. Unparseable values yield None so that
    upstream data-quality issues never crash an export.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _blank_to_none(cls, data):
        # the "kind" tag is the union discriminator and is left untouched
        if not isinstance(data, dict):
            return data
        return {
            k: None if k != "kind" and isinstance(v, str) and not v.strip() else v
            for k, v in data.items()
        }


class ControlRow(_Row):
    """A mitigation control as it stood at export time."""
    kind: Literal["control"] = "control"
    id: str
    title: Optional[str] = None
    status: Optional[str] = None
    severity: Optional[str] = None
    owner: Optional[str] = None
    due_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    job_id: Optional[str] = None

    @field_validator("due_date", "updated_at", "created_at", mode="before")
    @classmethod
    def _parse_times(cls, v):
        return parse_timestamp(v)


class AttestationRow(_Row):
    """A sign-off recorded against a work record."""
    kind: Literal["attestation"] = "attestation"
    id: str
    title: Optional[str] = None
    status: Optional[str] = None
    attested_by: Optional[str] = None
    attested_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    job_id: Optional[str] = None

    @field_validator("attested_at", "created_at", mode="before")
    @classmethod
    def _parse_times(cls, v):
        return parse_timestamp(v)


class LedgerEventRow(_Row):
    """A compliance ledger event shown in the ledger export."""
    kind: Literal["ledger_event"] = "ledger_event"
    seq: int
    event_name: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    actor_id: Optional[str] = None
    created_at: Optional[datetime] = None
    entry_hash: Optional[str] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_times(cls, v):
        return parse_timestamp(v)


Row = Annotated[Union[ControlRow, AttestationRow, LedgerEventRow], Field(discriminator="kind")]

_row_adapter = TypeAdapter(Row)

R = TypeVar("R", bound=_Row)


def coerce_rows(rows: Iterable[Any], model: Type[R]) -> List[R]:
    """
    Validate rows against one document schema.

    Already-typed rows pass through; dicts without a "kind" tag are tagged
    with the schema's kind. A row of another kind is rejected.
    """
    kind = model.model_fields["kind"].default
    out: List[R] = []
    for i, row in enumerate(rows):
        if isinstance(row, model):
            out.append(row)
            continue
        if isinstance(row, _Row):
            raise RowValidationError(kind, i, f"got {row.kind} row")
        if not isinstance(row, dict):
            raise RowValidationError(kind, i, f"expected mapping, got {type(row).__name__}")
        data = dict(row)
        data.setdefault("kind", kind)
        try:
            parsed = _row_adapter.validate_python(data)
        except ValidationError as e:
            raise RowValidationError(kind, i, str(e)) from e
        if not isinstance(parsed, model):
            raise RowValidationError(kind, i, f"got {parsed.kind} row")
        out.append(parsed)
    return out

"""
Request-scoped inputs to pack generation.

PackRequest describes who asked for what. GenerationContext is what a
document generator is allowed to see. RenderConfig carries presentation
options explicitly so there is no process-wide theme object.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .normalize import SEVERITY_LEVELS
from .rows import parse_timestamp

PRESET_DAYS = {"7d": 7, "30d": 30, "90d": 90}
TIME_RANGE_PRESETS = ("7d", "30d", "90d", "all", "custom")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TimeRangeError(ValueError):
    """Raised for an unknown preset or an invalid custom window."""


def format_ts(dt: Optional[datetime]) -> str:
    """RFC3339 UTC with second precision, the format used on every export."""
    if dt is None:
        return ""
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def format_date(dt: Optional[datetime]) -> str:
    if dt is None:
        return ""
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%d')


@dataclass(frozen=True)
class TimeRange:
    """A time range preset resolved to an explicit half-open [start, end) window."""
    preset: str
    start: datetime
    end: datetime

    @property
    def label(self) -> str:
        if self.preset in PRESET_DAYS:
            return f"Last {PRESET_DAYS[self.preset]} days"
        if self.preset == "all":
            return "All time"
        # end is exclusive; show the last day the window covers
        last = max(self.start, self.end - timedelta(microseconds=1))
        return f"{format_date(self.start)} to {format_date(last)}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "preset": self.preset,
            "start": format_ts(self.start),
            "end": format_ts(self.end),
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimeRange':
        start = parse_timestamp(data.get("start"))
        end = parse_timestamp(data.get("end"))
        if start is None or end is None:
            raise TimeRangeError("recorded time range is missing start or end")
        return cls(preset=data.get("preset", "custom"), start=start, end=end)

    @classmethod
    def resolve(
        cls,
        preset: str,
        now: datetime,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> 'TimeRange':
        """
        Resolve a preset against the request clock.

        Args:
            preset: 7d, 30d, 90d, all or custom
            now: The request instant
            start_date: ISO-8601 start (custom only)
            end_date: ISO-8601 end (custom only), exclusive; a bare date
                covers the whole day, so it resolves to the next midnight

        Raises:
            TimeRangeError: unknown preset, missing or unparseable custom
                bounds, or start after end
        """
        if preset in PRESET_DAYS:
            return cls(preset=preset, start=now - timedelta(days=PRESET_DAYS[preset]), end=now)
        if preset == "all":
            return cls(preset=preset, start=EPOCH, end=now)
        if preset != "custom":
            raise TimeRangeError(f"time_range must be one of {', '.join(TIME_RANGE_PRESETS)}")

        if not start_date or not end_date:
            raise TimeRangeError("custom time_range requires start_date and end_date")
        start = parse_timestamp(start_date)
        end = parse_timestamp(end_date)
        if start is None:
            raise TimeRangeError("start_date is not a valid ISO-8601 date")
        if end is None:
            raise TimeRangeError("end_date is not a valid ISO-8601 date")
        if len(end_date.strip()) == 10:
            end = end + timedelta(days=1)
        if start > end:
            raise TimeRangeError("start_date must not be after end_date")
        return cls(preset=preset, start=start, end=end)


class PackFilters(BaseModel):
    """Filters accepted by the pack export."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    status: Optional[str] = None
    risk_level: Optional[str] = None
    assigned_to: Optional[str] = None
    job_type: Optional[str] = None
    job_id: Optional[str] = None
    overdue_only: bool = False
    high_severity_only: bool = False
    pending_only: bool = False

    @field_validator("status")
    @classmethod
    def _status(cls, v):
        if v is None:
            return v
        v = v.strip().lower()
        if v not in ("completed", "pending", "overdue"):
            raise ValueError("status must be completed, pending or overdue")
        return v

    @field_validator("risk_level")
    @classmethod
    def _risk_level(cls, v):
        if v is None:
            return v
        v = v.strip().lower()
        if v not in SEVERITY_LEVELS:
            raise ValueError(f"risk_level must be one of {', '.join(SEVERITY_LEVELS)}")
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Only the filters that are actually set."""
        return {k: v for k, v in self.model_dump().items() if v not in (None, False, "")}


@dataclass(frozen=True)
class Requester:
    user_id: str
    name: str
    role: str


@dataclass(frozen=True)
class PackRequest:
    organization_id: str
    organization_name: str
    requested_by: Requester
    time_range: TimeRange
    filters: PackFilters = field(default_factory=PackFilters)


@dataclass(frozen=True)
class RenderConfig:
    """Presentation options handed to every generator call."""
    strict: bool = True
    brand: str = "Riskmate"
    page_size: str = "letter"


@dataclass(frozen=True)
class GenerationContext:
    """
    Everything a generator may depend on besides its rows.

    as_of is the evaluation instant for time rules (overdue). It is never
    rendered, so artifacts stay byte-identical between packs over the same
    data.
    """
    organization_name: str
    time_range: TimeRange
    as_of: datetime
    filters: PackFilters = field(default_factory=PackFilters)
    config: RenderConfig = field(default_factory=RenderConfig)

    @classmethod
    def for_request(cls, request: PackRequest, as_of: datetime, config: Optional[RenderConfig] = None) -> 'GenerationContext':
        return cls(
            organization_name=request.organization_name,
            time_range=request.time_range,
            as_of=as_of,
            filters=request.filters,
            config=config or RenderConfig(),
        )

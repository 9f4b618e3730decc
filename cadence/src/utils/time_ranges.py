"""
Half-open time range helpers.

All persisted datetimes are naive UTC (the convention used by every model
column); aware datetimes coming from callers or the expander are normalized
with ``to_utc_naive`` before they reach the database.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from cadence.src.config.settings import get_settings


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_aware(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeRange:
    """
    A half-open interval ``[start, end)``.

    Two ranges that only share a boundary instant do not overlap:
    ``[09:00, 10:00)`` and ``[10:00, 11:00)`` are disjoint.
    """

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError(
                f"Time range end ({self.end.isoformat()}) must be after "
                f"start ({self.start.isoformat()})"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeRange") -> bool:
        return (
            to_utc_naive(self.start) < to_utc_naive(other.end)
            and to_utc_naive(other.start) < to_utc_naive(self.end)
        )

    def normalized(self) -> "TimeRange":
        """Return the same range expressed in naive UTC."""
        return TimeRange(to_utc_naive(self.start), to_utc_naive(self.end))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": to_utc_aware(self.start).isoformat(),
            "end": to_utc_aware(self.end).isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["TimeRange"]:
        if not data:
            return None
        return cls(
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
        )


def zone_for(tz_name: Optional[str] = None) -> ZoneInfo:
    """ZoneInfo for an IANA name, falling back to the configured default."""
    return ZoneInfo(tz_name or get_settings().default_timezone)

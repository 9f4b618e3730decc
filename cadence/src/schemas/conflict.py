"""
Pydantic schemas for conflict preview.

Provides data validation and serialization for:
- Time ranges ([start, end) intervals)
- Conflict preview requests (explicit ranges or a recurrence rule)
- Per-candidate conflict results
"""

from datetime import datetime, timedelta
from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator

from cadence.src.utils.time_ranges import TimeRange


# ============================================================================
# Time Ranges
# ============================================================================


class TimeRangeSchema(BaseModel):
    """Half-open time interval ``[start, end)``."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self) -> "TimeRangeSchema":
        """Ensure the range is not empty."""
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def to_time_range(self) -> TimeRange:
        return TimeRange(self.start, self.end)

    @classmethod
    def from_time_range(cls, time_range: Optional[TimeRange]) -> Optional["TimeRangeSchema"]:
        if time_range is None:
            return None
        return cls(start=time_range.start, end=time_range.end)

    model_config = {
        "json_schema_extra": {
            "example": {
                "start": "2026-03-02T09:00:00Z",
                "end": "2026-03-02T10:00:00Z",
            }
        }
    }


# ============================================================================
# Requests
# ============================================================================


class ConflictPreviewRequest(BaseModel):
    """Candidate ranges to check against existing records in a scope."""

    record_type: str = Field(..., min_length=1, max_length=100)
    scope_field: Optional[str] = Field(
        default=None,
        description="Field identifying the shared resource (e.g. resource_id)"
    )
    scope_value: Optional[Any] = None
    time_field: str = Field(default="time_slot", min_length=1)
    ranges: List[TimeRangeSchema] = Field(..., min_length=1)


class SeriesConflictPreviewRequest(BaseModel):
    """A recurrence to expand and check before creating a series."""

    record_type: str = Field(..., min_length=1, max_length=100)
    scope_field: Optional[str] = None
    scope_value: Optional[Any] = None
    time_field: str = Field(default="time_slot", min_length=1)
    rrule: str = Field(..., min_length=1)
    anchor_start: datetime
    duration: timedelta
    timezone: Optional[str] = None
    window_end: Optional[datetime] = Field(
        default=None,
        description="Last occurrence start to consider (default: now + horizon)"
    )


# ============================================================================
# Responses
# ============================================================================


class ConflictPreviewItem(BaseModel):
    """Conflict result for one candidate range."""

    index: int = Field(..., ge=0, description="Position of the candidate in the request")
    range: TimeRangeSchema
    conflict: bool
    conflicting_record_id: Optional[int] = None
    conflicting_display: Optional[str] = Field(
        default=None,
        description="Display name of the conflicting record, or #id"
    )


class ConflictPreviewResponse(BaseModel):
    """Conflict preview for a list of candidates."""

    items: List[ConflictPreviewItem]
    conflict_count: int

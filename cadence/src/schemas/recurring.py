"""
Pydantic schemas for recurring series API request/response validation.

Provides data validation and serialization for:
- Series creation, expansion, split, template and schedule updates
- Occurrence cancel / reschedule / modify results
- Series membership of a record
- Group summaries and instance listings

Design:
- Series and groups carry both internal ids and GUIDs (rsr_xxx / rsg_xxx);
  the HTTP layer addresses them by GUID
- Durations are ISO 8601 durations or seconds (pydantic timedelta)
"""

import enum
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from cadence.src.schemas.conflict import TimeRangeSchema


COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


# ============================================================================
# Enums
# ============================================================================


class InstanceFilter(str, enum.Enum):
    """Instance listing filters."""
    ALL = "all"
    UPCOMING = "upcoming"
    PAST = "past"
    EXCEPTIONS = "exceptions"


class GroupStatus(str, enum.Enum):
    """Derived status of a series group."""
    ACTIVE = "active"
    NEEDS_ATTENTION = "needs_attention"
    ENDED = "ended"


def _validate_color(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    if not COLOR_PATTERN.match(v):
        raise ValueError("Color must be hex format like #RRGGBB")
    return v


# ============================================================================
# Request Schemas
# ============================================================================


class SeriesCreate(BaseModel):
    """
    Schema for creating a recurring series and its group.

    record_type, rrule, anchor_start and duration are checked by the service
    so a missing value surfaces as a MissingField error.
    """

    group_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=7)
    record_type: Optional[str] = Field(default=None, max_length=100)
    template: Dict[str, Any] = Field(default_factory=dict)
    rrule: Optional[str] = None
    anchor_start: Optional[datetime] = None
    duration: Optional[timedelta] = None
    timezone: Optional[str] = Field(default=None, max_length=64)
    time_field: Optional[str] = Field(default=None, max_length=100)
    expand_now: bool = True

    @field_validator("color")
    @classmethod
    def validate_color_format(cls, v: Optional[str]) -> Optional[str]:
        """Validate hex color format."""
        return _validate_color(v)

    @field_validator("group_name")
    @classmethod
    def validate_name_not_whitespace(cls, v: str) -> str:
        """Ensure name is not just whitespace."""
        if not v.strip():
            raise ValueError("Group name cannot be empty or whitespace")
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "example": {
                "group_name": "Tuesday Yoga",
                "color": "#3B82F6",
                "record_type": "reservations",
                "template": {"resource_id": 5, "purpose": "Yoga"},
                "rrule": "FREQ=WEEKLY;BYDAY=TU;COUNT=12",
                "anchor_start": "2026-03-03T17:00:00Z",
                "duration": "PT1H",
                "timezone": "America/New_York",
                "expand_now": True,
            }
        }
    }


class ExpandRequest(BaseModel):
    """Request to materialize a series through a date."""

    until: date


class SplitRequest(BaseModel):
    """Split a series: close it and open a new version from split_date."""

    split_date: date
    new_anchor_start: datetime
    new_duration: Optional[timedelta] = None
    template_delta: Optional[Dict[str, Any]] = None


class TemplateUpdate(BaseModel):
    """Merge a delta onto the current template of a series."""

    template_delta: Dict[str, Any]
    skip_exceptions: bool = True


class ScheduleUpdate(BaseModel):
    """Replace the rule, anchor and duration of a series."""

    anchor_start: datetime
    duration: timedelta
    rrule: str = Field(..., min_length=1)


class GroupInfoUpdate(BaseModel):
    """Update the display properties of a group."""

    display_name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=7)

    @field_validator("color")
    @classmethod
    def validate_color_format(cls, v: Optional[str]) -> Optional[str]:
        """Validate hex color format."""
        return _validate_color(v)


class CancelOccurrenceRequest(BaseModel):
    reason: Optional[str] = None


class RescheduleOccurrenceRequest(BaseModel):
    new_range: TimeRangeSchema


class ModifyOccurrenceRequest(BaseModel):
    values: Dict[str, Any] = Field(..., min_length=1)
    reason: Optional[str] = None


# ============================================================================
# Response Schemas
# ============================================================================


class SeriesCreateResponse(BaseModel):
    """Identifiers of a newly created group and its first series."""

    success: bool = True
    group_id: int
    group_guid: str = Field(..., description="Group GUID (rsg_xxx)")
    series_id: int
    series_guid: str = Field(..., description="Series GUID (rsr_xxx)")
    job_id: Optional[int] = None
    message: str


class ExpandResponse(BaseModel):
    success: bool = True
    queued: bool = True
    series_id: int
    expand_until: date
    job_id: int
    message: str


class OccurrenceResponse(BaseModel):
    """Result of cancelling or modifying one occurrence."""

    success: bool = True
    message: str
    series_id: Optional[int] = None
    occurrence_date: Optional[date] = None


class RescheduleResponse(BaseModel):
    success: bool = True
    message: str
    series_id: Optional[int] = None
    occurrence_date: Optional[date] = None
    prior_range: Optional[TimeRangeSchema] = None
    new_range: TimeRangeSchema


class SplitResponse(BaseModel):
    success: bool = True
    original_series_id: int
    new_series_id: int
    new_series_guid: str
    group_id: int
    group_guid: str
    split_date: date
    message: str


class TemplateUpdateResponse(BaseModel):
    success: bool = True
    series_id: int
    instances_updated: int
    message: str


class ScheduleUpdateResponse(BaseModel):
    success: bool = True
    series_id: int
    entities_deleted: int
    expand_until: date
    job_id: int
    message: str


class DeleteResponse(BaseModel):
    success: bool = True
    entities_deleted: int
    group_deleted: bool = False
    message: str


class GroupInfoResponse(BaseModel):
    group_id: int
    group_guid: str
    display_name: str
    description: Optional[str] = None
    color: Optional[str] = None
    updated_at: datetime


class MembershipResponse(BaseModel):
    """Whether a record belongs to a series, and where."""

    is_member: bool
    series_id: Optional[int] = None
    series_guid: Optional[str] = None
    group_id: Optional[int] = None
    group_guid: Optional[str] = None
    group_name: Optional[str] = None
    group_color: Optional[str] = None
    occurrence_date: Optional[date] = None
    is_exception: Optional[bool] = None
    exception_type: Optional[str] = None
    original_template: Optional[Dict[str, Any]] = None


class InstanceResponse(BaseModel):
    """One tracked occurrence."""

    id: int
    series_id: int
    occurrence_date: date
    record_type: str
    record_id: Optional[int] = None
    is_exception: bool
    exception_type: Optional[str] = None
    original_start: Optional[datetime] = None
    original_end: Optional[datetime] = None
    reschedule_history: Optional[List[Dict[str, Any]]] = None
    exception_reason: Optional[str] = None
    exception_at: Optional[datetime] = None
    exception_by: Optional[str] = None

    model_config = {"from_attributes": True}


class CurrentVersionSummary(BaseModel):
    """Snapshot of the version currently governing a group."""

    series_id: int
    series_guid: str
    version_number: int
    rrule: str
    rule_description: str
    anchor_start: datetime
    duration: timedelta
    timezone: Optional[str] = None
    status: str
    template: Dict[str, Any]


class GroupSummaryResponse(BaseModel):
    """Read-only summary of a series group."""

    group_id: int
    group_guid: str
    display_name: str
    description: Optional[str] = None
    color: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    record_type: Optional[str] = None
    version_count: int
    started_on: Optional[date] = None
    current_version: Optional[CurrentVersionSummary] = None
    active_instance_count: int
    exception_count: int
    status: GroupStatus
    instances: List[InstanceResponse] = Field(default_factory=list)


class RuleDescriptionResponse(BaseModel):
    """Human-readable rendering of a recurrence rule."""

    rrule: str
    frequency: str
    description: str

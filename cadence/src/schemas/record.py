"""
Pydantic schemas for the generic record API.

Records are the concrete bookings occurrences materialize into. The API
exposes them so that bookings outside any series, and direct deletes that
bypass the series manager, go through the same store.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from cadence.src.schemas.conflict import TimeRangeSchema


class RecordCreate(BaseModel):
    """Schema for creating a record."""

    record_type: str = Field(..., min_length=1, max_length=100)
    fields: Dict[str, Any] = Field(default_factory=dict)
    time_field: Optional[str] = Field(default=None, max_length=100)
    time_range: Optional[TimeRangeSchema] = None


class RecordResponse(BaseModel):
    """One stored record."""

    record_type: str
    record_id: int
    fields: Dict[str, Any]
    time_field: Optional[str] = None
    time_range: Optional[TimeRangeSchema] = None
    label: str

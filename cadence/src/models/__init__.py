"""
SQLAlchemy models for the cadence scheduling engine.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# All models inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata

# Recurring schedules
from cadence.src.models.series_group import SeriesGroup
from cadence.src.models.series import Series, SeriesStatus, series_deletion
from cadence.src.models.series_instance import SeriesInstance, ExceptionType

# Record store and field metadata
from cadence.src.models.record_type import RecordType, RecordField
from cadence.src.models.record import Record

# Expansion queue
from cadence.src.models.expansion_job import ExpansionJob, ExpansionJobStatus

__all__ = [
    "Base",
    "SeriesGroup",
    "Series",
    "SeriesStatus",
    "series_deletion",
    "SeriesInstance",
    "ExceptionType",
    "RecordType",
    "RecordField",
    "Record",
    "ExpansionJob",
    "ExpansionJobStatus",
]

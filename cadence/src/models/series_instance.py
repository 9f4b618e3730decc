"""
SeriesInstance model: junction between one occurrence and its record.

Instances carry the exception state of an occurrence. They are created by
the expansion worker and then only mutated: cancelling an occurrence nulls
``record_id`` and records why, so the audit history survives the record.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Text,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from cadence.src.models import Base
from cadence.src.models.types import JSONBType


class ExceptionType(enum.Enum):
    """How an occurrence deviates from its series template."""
    MODIFIED = "modified"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    CONFLICT_SKIPPED = "conflict_skipped"


class SeriesInstance(Base):
    """
    One tracked occurrence of a Series.

    Attributes:
        id: Primary key (internal)
        series_id: Owning Series
        occurrence_date: Local date of the occurrence in the series timezone
        record_type: Record type of the linked record
        record_id: Linked record (NULL when cancelled or conflict-skipped)
        is_exception: True once the occurrence deviates from the template
        exception_type: modified, rescheduled, cancelled, conflict_skipped
            (NULL when not an exception)
        original_start: Start of the range before the latest reschedule
        original_end: End of the range before the latest reschedule
        reschedule_history: Every prior range, oldest first
        exception_reason: Free-text reason
        exception_at: When the exception was recorded
        exception_by: Who recorded the exception
        created_at: Creation timestamp

    Relationships:
        series: Owning series (many-to-one)

    Constraints:
        - (series_id, occurrence_date) unique
        - (record_type, record_id) unique: a record belongs to at most one
          occurrence
    """

    __tablename__ = "series_instances"

    id = Column(Integer, primary_key=True, autoincrement=True)

    series_id = Column(
        Integer,
        ForeignKey("recurring_series.id", name="fk_instances_series_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    occurrence_date = Column(Date, nullable=False)

    record_type = Column(String(100), nullable=False)
    record_id = Column(Integer, nullable=True)

    is_exception = Column(Boolean, nullable=False, default=False)
    exception_type = Column(String(20), nullable=True)
    original_start = Column(DateTime, nullable=True)
    original_end = Column(DateTime, nullable=True)
    reschedule_history = Column(JSONBType, nullable=True)
    exception_reason = Column(Text, nullable=True)
    exception_at = Column(DateTime, nullable=True)
    exception_by = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    series = relationship("Series", back_populates="instances")

    __table_args__ = (
        UniqueConstraint("series_id", "occurrence_date", name="uq_instance_series_date"),
        UniqueConstraint("record_type", "record_id", name="uq_instance_record"),
        Index(
            "idx_instances_exceptions",
            "series_id",
            postgresql_where=(is_exception.is_(True))
        ),
    )

    @property
    def has_record(self) -> bool:
        return self.record_id is not None

    def mark_exception(
        self,
        exception_type: ExceptionType,
        actor=None,
        reason=None,
        at=None,
    ) -> None:
        """Flag this occurrence as an exception of the given type."""
        self.is_exception = True
        self.exception_type = exception_type.value
        self.exception_by = actor
        self.exception_at = at or datetime.utcnow()
        if reason is not None:
            self.exception_reason = reason

    def __repr__(self) -> str:
        return (
            f"<SeriesInstance("
            f"id={self.id}, "
            f"series_id={self.series_id}, "
            f"date={self.occurrence_date}, "
            f"record={self.record_type}#{self.record_id}, "
            f"exception={self.exception_type}"
            f")>"
        )

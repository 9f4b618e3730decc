"""
Series model: one versioned recurrence definition.

A Series stamps ``template`` onto every occurrence produced by expanding
``rrule`` from ``anchor_start``. Versions are append-only: a split closes
the current version by setting ``effective_until`` and opens the next one,
so "what was the schedule on date X" can always be answered.

Series rows are never deleted on their own. Deleting one outside
``series_deletion()`` raises SeriesDeletionError, which keeps record
cleanup in the single code path that knows about it.
"""

import enum
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Text, Interval,
    ForeignKey, Index, UniqueConstraint, event
)
from sqlalchemy.orm import relationship, object_session

from cadence.src.models import Base
from cadence.src.models.mixins import GuidMixin
from cadence.src.models.types import JSONBType
from cadence.src.services.exceptions import SeriesDeletionError


SERIES_DELETE_ALLOWED = "cadence.series_delete_allowed"


class SeriesStatus(enum.Enum):
    """Series lifecycle status."""
    ACTIVE = "active"
    PAUSED = "paused"
    NEEDS_ATTENTION = "needs_attention"
    ENDED = "ended"


class Series(Base, GuidMixin):
    """
    Versioned recurrence definition.

    Attributes:
        id: Primary key (internal)
        guid: GUID string property (rsr_xxx, inherited from GuidMixin)
        group_id: Owning SeriesGroup (nullable for standalone series)
        version_number: Monotonic version within the group
        effective_from: First date this version governs
        effective_until: Last date this version governs (NULL = current)
        record_type: Record type every occurrence is created as
        template: Field/value map copied onto each generated record
        rrule: RFC 5545 recurrence rule (without DTSTART)
        anchor_start: First occurrence start (naive UTC)
        duration: Length of each occurrence
        timezone: IANA timezone used for wall-clock expansion
        time_field: Name of the time-range field on the record type
        status: active, paused, needs_attention or ended
        expanded_until: Expansion high-water mark
        created_by: Actor that created this version
        created_at: Creation timestamp
        template_updated_at: Last template propagation timestamp
        template_updated_by: Actor of the last template propagation

    Relationships:
        group: Owning group (many-to-one)
        instances: Tracked occurrences (one-to-many, CASCADE on delete)

    Constraints:
        - (group_id, version_number) unique
    """

    __tablename__ = "recurring_series"

    GUID_PREFIX = "rsr"

    id = Column(Integer, primary_key=True, autoincrement=True)

    group_id = Column(
        Integer,
        ForeignKey("series_groups.id", name="fk_series_group_id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    version_number = Column(Integer, nullable=False, default=1)

    effective_from = Column(Date, nullable=False)
    effective_until = Column(Date, nullable=True)

    record_type = Column(String(100), nullable=False, index=True)
    template = Column(JSONBType, nullable=False, default=dict)

    rrule = Column(Text, nullable=False)
    anchor_start = Column(DateTime, nullable=False)
    duration = Column(Interval, nullable=False)
    timezone = Column(String(64), nullable=True)
    time_field = Column(String(100), nullable=False, default="time_slot")

    status = Column(String(20), nullable=False, default=SeriesStatus.ACTIVE.value)
    expanded_until = Column(Date, nullable=True)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    template_updated_at = Column(DateTime, nullable=True)
    template_updated_by = Column(String(255), nullable=True)

    group = relationship("SeriesGroup", back_populates="series")
    instances = relationship(
        "SeriesInstance",
        back_populates="series",
        cascade="all, delete-orphan",
        order_by="SeriesInstance.occurrence_date",
    )

    __table_args__ = (
        UniqueConstraint("group_id", "version_number", name="uq_series_group_version"),
        Index(
            "idx_series_current",
            "group_id",
            postgresql_where=(effective_until.is_(None))
        ),
    )

    @property
    def is_current(self) -> bool:
        return self.effective_until is None

    @property
    def occurrence_count(self) -> int:
        return len(self.instances)

    def __repr__(self) -> str:
        return (
            f"<Series("
            f"id={self.id}, "
            f"group_id={self.group_id}, "
            f"version={self.version_number}, "
            f"rrule='{self.rrule}', "
            f"status={self.status}"
            f")>"
        )


@contextmanager
def series_deletion(session):
    """
    Allow Series rows to be deleted inside the block.

    Re-entrant: delete_group runs delete_series once per version.
    """
    depth = session.info.get(SERIES_DELETE_ALLOWED, 0)
    session.info[SERIES_DELETE_ALLOWED] = depth + 1
    try:
        yield session
    finally:
        if depth:
            session.info[SERIES_DELETE_ALLOWED] = depth
        else:
            session.info.pop(SERIES_DELETE_ALLOWED, None)


@event.listens_for(Series, "before_delete")
def _guard_series_delete(mapper, connection, target):
    session = object_session(target)
    if session is None or not session.info.get(SERIES_DELETE_ALLOWED):
        raise SeriesDeletionError(target.id)

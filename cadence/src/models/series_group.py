"""
SeriesGroup model: the user-visible identity of one recurring schedule.

A group spans every version of a schedule. Editing "this and future"
occurrences closes the current Series and opens a new version inside the
same group, so the group is what users see, rename and delete.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import relationship

from cadence.src.models import Base
from cadence.src.models.mixins import GuidMixin


class SeriesGroup(Base, GuidMixin):
    """
    Recurring schedule group.

    Attributes:
        id: Primary key (internal)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (rsg_xxx, inherited from GuidMixin)
        display_name: Name shown to users
        description: Optional free-text description
        color: Optional display color (#RRGGBB)
        created_by: Actor that created the group
        created_at: Creation timestamp
        updated_at: Last update timestamp

    Relationships:
        series: Versions of this schedule (one-to-many, CASCADE on delete)
    """

    __tablename__ = "series_groups"

    GUID_PREFIX = "rsg"

    id = Column(Integer, primary_key=True, autoincrement=True)

    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(7), nullable=True)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    series = relationship(
        "Series",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="Series.version_number",
    )

    @property
    def current_series(self):
        """Open version with the highest version number, if any."""
        open_versions = [s for s in self.series if s.effective_until is None]
        if not open_versions:
            return None
        return max(open_versions, key=lambda s: s.version_number)

    def __repr__(self) -> str:
        return (
            f"<SeriesGroup("
            f"id={self.id}, "
            f"display_name='{self.display_name}', "
            f"versions={len(self.series)}"
            f")>"
        )

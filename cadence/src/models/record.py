"""
Record model: generic storage for bookable records of any type.

Field values live in a JSON document; the single time-range field is
promoted to ``range_start``/``range_end`` columns so overlap queries run in
SQL.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Index

from cadence.src.models import Base
from cadence.src.models.types import JSONBType


class Record(Base):
    """
    A concrete booking.

    Attributes:
        id: Primary key, the record id referenced by series instances
        record_type: Name of the record type
        fields: Field/value map (excluding the time range)
        time_field: Name of the time-range field
        range_start: Time range start (naive UTC, inclusive)
        range_end: Time range end (naive UTC, exclusive)
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_type = Column(String(100), nullable=False, index=True)
    fields = Column(JSONBType, nullable=False, default=dict)

    time_field = Column(String(100), nullable=True)
    range_start = Column(DateTime, nullable=True)
    range_end = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __table_args__ = (
        Index("idx_records_type_range", "record_type", "range_start", "range_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<Record(id={self.id}, type='{self.record_type}', "
            f"range=[{self.range_start}, {self.range_end}))>"
        )

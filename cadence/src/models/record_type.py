"""
RecordType and RecordField models: field metadata for bookable records.

These tables back SqlFieldMetadataSource. A record type lists its fields
with the flags the template validator needs (editable, nullable, has a
default) and may declare an exclusive scope field, in which case records
sharing that field's value may not overlap in time.
"""

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship

from cadence.src.models import Base


class RecordType(Base):
    """
    Bookable record type.

    Attributes:
        id: Primary key
        name: Unique type name (e.g. "reservations")
        display_field: Field used as the human-readable label of a record
        exclusive_scope_field: When set, overlapping records with the same
            value of this field are rejected by the entity store
        created_at: Creation timestamp

    Relationships:
        fields: Field definitions (one-to-many, CASCADE on delete)
    """

    __tablename__ = "record_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    display_field = Column(String(100), nullable=False, default="display_name")
    exclusive_scope_field = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    fields = relationship(
        "RecordField",
        back_populates="record_type",
        cascade="all, delete-orphan",
        order_by="RecordField.id",
    )

    def __repr__(self) -> str:
        return f"<RecordType(id={self.id}, name='{self.name}')>"


class RecordField(Base):
    """
    One field of a record type.

    A field is required in templates when it is not nullable and has no
    default.
    """

    __tablename__ = "record_fields"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_type_id = Column(
        Integer,
        ForeignKey("record_types.id", name="fk_record_fields_type_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(100), nullable=False)
    data_type = Column(String(50), nullable=False, default="text")
    editable = Column(Boolean, nullable=False, default=True)
    nullable = Column(Boolean, nullable=False, default=True)
    has_default = Column(Boolean, nullable=False, default=False)

    record_type = relationship("RecordType", back_populates="fields")

    __table_args__ = (
        UniqueConstraint("record_type_id", "name", name="uq_record_field_name"),
    )

    @property
    def required(self) -> bool:
        return not self.nullable and not self.has_default

    def __repr__(self) -> str:
        return (
            f"<RecordField(name='{self.name}', editable={self.editable}, "
            f"required={self.required})>"
        )

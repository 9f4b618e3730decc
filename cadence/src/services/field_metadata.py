"""
Field metadata source: which fields exist on a record type and how they
may be used by templates.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.orm import Session, selectinload

from cadence.src.models import RecordType


@dataclass(frozen=True)
class FieldInfo:
    """Template-relevant flags of one record field."""

    name: str
    editable: bool = True
    nullable: bool = True
    has_default: bool = False
    data_type: str = "text"

    @property
    def required(self) -> bool:
        return not self.nullable and not self.has_default


class FieldMetadataSource(ABC):
    """Contract for looking up record type field definitions."""

    @abstractmethod
    def get_fields(self, record_type: str) -> Optional[Dict[str, FieldInfo]]:
        """
        Get the fields of a record type.

        Returns:
            Mapping of field name to FieldInfo, or None when the record type
            does not exist
        """

    def record_type_exists(self, record_type: str) -> bool:
        return self.get_fields(record_type) is not None


class SqlFieldMetadataSource(FieldMetadataSource):
    """Field metadata read from the record_types / record_fields tables."""

    def __init__(self, db: Session):
        self.db = db

    def get_record_type(self, record_type: str) -> Optional[RecordType]:
        return (
            self.db.query(RecordType)
            .options(selectinload(RecordType.fields))
            .filter(RecordType.name == record_type)
            .first()
        )

    def get_fields(self, record_type: str) -> Optional[Dict[str, FieldInfo]]:
        rtype = self.get_record_type(record_type)
        if rtype is None:
            return None

        return {
            f.name: FieldInfo(
                name=f.name,
                editable=f.editable,
                nullable=f.nullable,
                has_default=f.has_default,
                data_type=f.data_type,
            )
            for f in rtype.fields
        }

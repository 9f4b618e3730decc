"""
Record service: thin transactional wrapper over an EntityStore.

Used for bookings that are not part of a series and for direct deletes.
Deleting through the store fires its pre-delete hooks, so a record that
does belong to a series leaves a cancelled instance behind.
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from cadence.src.config.settings import get_settings
from cadence.src.services.entity_store import EntityStore, SqlEntityStore, StoredRecord
from cadence.src.services.exceptions import NotFoundError
from cadence.src.utils.logging_config import get_logger
from cadence.src.utils.time_ranges import TimeRange


logger = get_logger("services")


class RecordService:
    """Create, read and delete records of any type."""

    def __init__(self, db: Session, entity_store: Optional[EntityStore] = None):
        self.db = db
        self.entity_store = entity_store or SqlEntityStore(db)

    def create_record(
        self,
        record_type: str,
        fields: Dict[str, Any],
        time_field: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> StoredRecord:
        """
        Create a record.

        Raises:
            NotFoundError: If the record type does not exist
            RecordConflictError: If the range collides in an exclusive scope
        """
        if time_range is not None:
            time_field = time_field or get_settings().default_time_field

        try:
            record_id = self.entity_store.create(record_type, fields, time_field, time_range)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Created {record_type} record #{record_id}")
        return self.get_record(record_type, record_id)

    def get_record(self, record_type: str, record_id: int) -> StoredRecord:
        """
        Get a record.

        Raises:
            NotFoundError: If the record does not exist
        """
        record = self.entity_store.get(record_type, record_id)
        if record is None:
            raise NotFoundError(record_type, record_id)
        return record

    def delete_record(self, record_type: str, record_id: int) -> None:
        """
        Delete a record directly.

        Raises:
            NotFoundError: If the record does not exist
        """
        try:
            if not self.entity_store.delete(record_type, record_id):
                raise NotFoundError(record_type, record_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Deleted {record_type} record #{record_id}")

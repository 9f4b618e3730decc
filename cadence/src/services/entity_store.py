"""
Entity store: create, update and delete bookable records of any type.

The scheduling engine addresses records by ``(record_type, record_id)`` and
never by foreign key, so any storage that honours the EntityStore contract
can hold the concrete bookings. SqlEntityStore keeps them in the generic
``records`` table, inside the caller's session and transaction.

Pre-delete hooks let the instance tracker react when a record is removed
by a path that does not know about series (see
InstanceService.cleanup_orphaned_instance).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from cadence.src.models import Record, RecordType
from cadence.src.services.exceptions import NotFoundError, RecordConflictError
from cadence.src.utils.logging_config import get_logger
from cadence.src.utils.time_ranges import TimeRange


logger = get_logger("services")

PreDeleteHook = Callable[[str, int], None]


@dataclass
class StoredRecord:
    """Store-agnostic view of one record."""

    record_type: str
    record_id: int
    fields: Dict[str, Any] = field(default_factory=dict)
    time_field: Optional[str] = None
    time_range: Optional[TimeRange] = None
    label: str = ""


class EntityStore(ABC):
    """Contract for the store holding concrete bookings."""

    def __init__(self):
        self._pre_delete_hooks: List[PreDeleteHook] = []

    def add_pre_delete_hook(self, hook: PreDeleteHook) -> None:
        """Register ``hook(record_type, record_id)`` to run before deletes."""
        if hook not in self._pre_delete_hooks:
            self._pre_delete_hooks.append(hook)

    def _run_pre_delete_hooks(self, record_type: str, record_id: int) -> None:
        for hook in self._pre_delete_hooks:
            hook(record_type, record_id)

    @abstractmethod
    def create(
        self,
        record_type: str,
        fields: Dict[str, Any],
        time_field: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> int:
        """Create a record and return its id."""

    @abstractmethod
    def get(self, record_type: str, record_id: int) -> Optional[StoredRecord]:
        """Get a record, or None if it does not exist."""

    @abstractmethod
    def set_fields(self, record_type: str, record_id: int, values: Dict[str, Any]) -> bool:
        """Merge ``values`` into a record's fields. False if not found."""

    @abstractmethod
    def set_time_range(
        self,
        record_type: str,
        record_id: int,
        time_field: str,
        time_range: TimeRange,
    ) -> bool:
        """Replace a record's time range. False if not found."""

    @abstractmethod
    def delete(self, record_type: str, record_id: int) -> bool:
        """Delete a record after running pre-delete hooks. False if not found."""

    @abstractmethod
    def find_overlapping(
        self,
        record_type: str,
        scope_field: Optional[str],
        scope_value: Any,
        time_field: Optional[str],
        time_range: TimeRange,
        exclude_record_id: Optional[int] = None,
    ) -> Optional[StoredRecord]:
        """
        Find the earliest record in scope whose range overlaps ``time_range``.

        Ranges are half-open: touching endpoints do not overlap.
        """

    def get_time_range(
        self,
        record_type: str,
        record_id: int,
        time_field: Optional[str] = None,
    ) -> Optional[TimeRange]:
        record = self.get(record_type, record_id)
        return record.time_range if record else None


class SqlEntityStore(EntityStore):
    """
    EntityStore backed by the generic ``records`` table.

    Record types that declare an ``exclusive_scope_field`` reject records
    whose time range overlaps another record with the same scope value,
    raising RecordConflictError before anything is written.
    """

    def __init__(self, db: Session):
        super().__init__()
        self.db = db

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_record_type(self, record_type: str) -> RecordType:
        rtype = self.db.query(RecordType).filter(RecordType.name == record_type).first()
        if rtype is None:
            raise NotFoundError("Record type", record_type)
        return rtype

    def _get_record(self, record_type: str, record_id: int) -> Optional[Record]:
        record = self.db.get(Record, record_id)
        if record is None or record.record_type != record_type:
            return None
        return record

    def _to_stored(self, record: Record, display_field: Optional[str] = None) -> StoredRecord:
        time_range = None
        if record.range_start is not None and record.range_end is not None:
            time_range = TimeRange(record.range_start, record.range_end)

        label = (record.fields or {}).get(display_field or "display_name")
        return StoredRecord(
            record_type=record.record_type,
            record_id=record.id,
            fields=dict(record.fields or {}),
            time_field=record.time_field,
            time_range=time_range,
            label=str(label) if label else f"#{record.id}",
        )

    def _check_exclusive(
        self,
        rtype: RecordType,
        fields: Dict[str, Any],
        time_field: Optional[str],
        time_range: Optional[TimeRange],
        exclude_record_id: Optional[int] = None,
    ) -> None:
        scope_field = rtype.exclusive_scope_field
        if not scope_field or time_range is None:
            return
        scope_value = fields.get(scope_field)
        if scope_value is None:
            return

        clash = self.find_overlapping(
            rtype.name, scope_field, scope_value, time_field, time_range,
            exclude_record_id=exclude_record_id,
        )
        if clash is not None:
            raise RecordConflictError(rtype.name, clash.record_id)

    # =========================================================================
    # EntityStore contract
    # =========================================================================

    def create(
        self,
        record_type: str,
        fields: Dict[str, Any],
        time_field: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> int:
        rtype = self._get_record_type(record_type)
        values = {k: v for k, v in (fields or {}).items() if k != time_field}
        normalized = time_range.normalized() if time_range else None

        self._check_exclusive(rtype, values, time_field, normalized)

        record = Record(
            record_type=record_type,
            fields=values,
            time_field=time_field,
            range_start=normalized.start if normalized else None,
            range_end=normalized.end if normalized else None,
        )
        self.db.add(record)
        self.db.flush()
        return record.id

    def get(self, record_type: str, record_id: int) -> Optional[StoredRecord]:
        record = self._get_record(record_type, record_id)
        if record is None:
            return None
        rtype = self.db.query(RecordType).filter(RecordType.name == record_type).first()
        return self._to_stored(record, rtype.display_field if rtype else None)

    def set_fields(self, record_type: str, record_id: int, values: Dict[str, Any]) -> bool:
        record = self._get_record(record_type, record_id)
        if record is None:
            return False

        changes = {k: v for k, v in values.items() if k != record.time_field}
        merged = {**(record.fields or {}), **changes}

        rtype = self._get_record_type(record_type)
        if rtype.exclusive_scope_field in changes and record.range_start is not None:
            self._check_exclusive(
                rtype, merged, record.time_field,
                TimeRange(record.range_start, record.range_end),
                exclude_record_id=record.id,
            )

        # Reassign so the JSON column is flagged dirty
        record.fields = merged
        self.db.flush()
        return True

    def set_time_range(
        self,
        record_type: str,
        record_id: int,
        time_field: str,
        time_range: TimeRange,
    ) -> bool:
        record = self._get_record(record_type, record_id)
        if record is None:
            return False

        normalized = time_range.normalized()
        rtype = self._get_record_type(record_type)
        self._check_exclusive(
            rtype, record.fields or {}, time_field, normalized,
            exclude_record_id=record.id,
        )

        record.time_field = time_field
        record.range_start = normalized.start
        record.range_end = normalized.end
        self.db.flush()
        return True

    def delete(self, record_type: str, record_id: int) -> bool:
        record = self._get_record(record_type, record_id)
        if record is None:
            return False

        self._run_pre_delete_hooks(record_type, record_id)
        self.db.delete(record)
        self.db.flush()
        logger.debug(f"Deleted {record_type} record #{record_id}")
        return True

    def find_overlapping(
        self,
        record_type: str,
        scope_field: Optional[str],
        scope_value: Any,
        time_field: Optional[str],
        time_range: TimeRange,
        exclude_record_id: Optional[int] = None,
    ) -> Optional[StoredRecord]:
        normalized = time_range.normalized()

        query = self.db.query(Record).filter(
            Record.record_type == record_type,
            Record.range_start < normalized.end,
            Record.range_end > normalized.start,
        )
        if time_field:
            query = query.filter(Record.time_field == time_field)
        if exclude_record_id is not None:
            query = query.filter(Record.id != exclude_record_id)

        rtype = self.db.query(RecordType).filter(RecordType.name == record_type).first()
        display_field = rtype.display_field if rtype else None

        # Scope values live in the JSON document; compare as text
        for record in query.order_by(Record.range_start, Record.id):
            if scope_field is None or str((record.fields or {}).get(scope_field)) == str(scope_value):
                return self._to_stored(record, display_field)
        return None

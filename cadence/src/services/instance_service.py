"""
Instance tracking service.

Provides:
- Cancel / reschedule / modify of a single occurrence
- Orphan cleanup when a record is deleted outside the series manager
- Series membership lookup for a record
- Instance listings for a group or a series

Design:
- Instances are never removed by occurrence edits; cancelling nulls the
  record reference so the audit trail outlives the record
- A record that is not part of any series is handled directly, so callers
  can use one code path for every record
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cadence.src.config.settings import get_settings
from cadence.src.models import (
    ExceptionType,
    Series,
    SeriesGroup,
    SeriesInstance,
)
from cadence.src.schemas.conflict import TimeRangeSchema
from cadence.src.schemas.recurring import (
    InstanceFilter,
    MembershipResponse,
    OccurrenceResponse,
    RescheduleResponse,
)
from cadence.src.services.entity_store import EntityStore, SqlEntityStore
from cadence.src.services.exceptions import NotFoundError, ValidationError
from cadence.src.services.field_metadata import FieldMetadataSource, SqlFieldMetadataSource
from cadence.src.services.template_validation import TemplateValidator
from cadence.src.utils.logging_config import get_logger
from cadence.src.utils.time_ranges import TimeRange


logger = get_logger("services")

ORPHAN_REASON = "Entity record deleted directly"


class InstanceService:
    """
    Service for individual occurrences of recurring series.

    Registers ``cleanup_orphaned_instance`` as a pre-delete hook on its
    entity store, so any delete routed through that store keeps the
    instance table consistent.

    Usage:
        >>> service = InstanceService(db_session)
        >>> service.cancel_occurrence("reservations", 42, reason="Holiday")
        >>> service.get_membership("reservations", 42).is_member
        True
    """

    def __init__(
        self,
        db: Session,
        entity_store: Optional[EntityStore] = None,
        field_metadata: Optional[FieldMetadataSource] = None,
        register_orphan_hook: bool = True,
    ):
        """
        Initialize the instance service.

        Args:
            db: SQLAlchemy database session
            entity_store: Record store (defaults to SqlEntityStore on db)
            field_metadata: Field metadata (defaults to SqlFieldMetadataSource on db)
            register_orphan_hook: Register orphan cleanup on the store
        """
        self.db = db
        self.entity_store = entity_store or SqlEntityStore(db)
        self.field_metadata = field_metadata or SqlFieldMetadataSource(db)
        self.template_validator = TemplateValidator(self.field_metadata)
        if register_orphan_hook:
            self.entity_store.add_pre_delete_hook(self.cleanup_orphaned_instance)

    # =========================================================================
    # Lookups
    # =========================================================================

    def find_instance(
        self,
        record_type: str,
        record_id: int,
        lock: bool = False,
    ) -> Optional[SeriesInstance]:
        """Find the instance linked to a record, optionally row-locked."""
        query = self.db.query(SeriesInstance).filter(
            SeriesInstance.record_type == record_type,
            SeriesInstance.record_id == record_id,
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    # =========================================================================
    # Occurrence edits
    # =========================================================================

    def cancel_occurrence(
        self,
        record_type: str,
        record_id: int,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> OccurrenceResponse:
        """
        Cancel one occurrence.

        The instance keeps its date and gains a cancelled exception; the
        record itself is deleted. Cancelling again is a no-op that still
        succeeds.

        Args:
            record_type: Record type of the occurrence
            record_id: Record to cancel
            reason: Free-text reason stored on the instance
            actor: Actor cancelling the occurrence

        Returns:
            OccurrenceResponse
        """
        try:
            instance = self.find_instance(record_type, record_id, lock=True)

            if instance is None:
                if not self.entity_store.delete(record_type, record_id):
                    self.db.commit()
                    return OccurrenceResponse(message="Record already removed")
                self.db.commit()
                logger.info(f"Deleted {record_type} #{record_id} (not part of a series)")
                return OccurrenceResponse(message="Record deleted (not part of a series)")

            instance.record_id = None
            instance.mark_exception(ExceptionType.CANCELLED, actor=actor, reason=reason)
            self.db.flush()

            self.entity_store.delete(record_type, record_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Cancelled occurrence {instance.occurrence_date} of series "
            f"{instance.series_id} ({record_type} #{record_id})"
        )
        return OccurrenceResponse(
            message="Occurrence cancelled",
            series_id=instance.series_id,
            occurrence_date=instance.occurrence_date,
        )

    def reschedule_occurrence(
        self,
        record_type: str,
        record_id: int,
        new_range: TimeRange,
        actor: Optional[str] = None,
    ) -> RescheduleResponse:
        """
        Move one occurrence to a new time range.

        Members of a series get the prior range snapshotted into
        ``original_start``/``original_end`` and appended to the reschedule
        history before the new range is applied.

        Raises:
            NotFoundError: If the record does not exist
            RecordConflictError: If the store rejects the new range
        """
        try:
            record = self.entity_store.get(record_type, record_id)
            if record is None:
                raise NotFoundError(record_type, record_id)

            instance = self.find_instance(record_type, record_id, lock=True)
            prior_range = record.time_range
            time_field = record.time_field
            if time_field is None and instance is not None:
                time_field = instance.series.time_field
            time_field = time_field or get_settings().default_time_field

            self.entity_store.set_time_range(record_type, record_id, time_field, new_range)

            if instance is not None:
                if prior_range is not None:
                    instance.original_start = prior_range.start
                    instance.original_end = prior_range.end
                    history = list(instance.reschedule_history or [])
                    history.append({
                        **prior_range.to_dict(),
                        "replaced_at": datetime.utcnow().isoformat(),
                        "replaced_by": actor,
                    })
                    instance.reschedule_history = history
                instance.mark_exception(ExceptionType.RESCHEDULED, actor=actor)
                self.db.flush()

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if instance is None:
            logger.info(f"Rescheduled {record_type} #{record_id} (not part of a series)")
            message = "Record rescheduled (not part of a series)"
        else:
            logger.info(
                f"Rescheduled occurrence {instance.occurrence_date} of series "
                f"{instance.series_id} ({record_type} #{record_id})"
            )
            message = "Occurrence rescheduled"

        return RescheduleResponse(
            message=message,
            series_id=instance.series_id if instance else None,
            occurrence_date=instance.occurrence_date if instance else None,
            prior_range=TimeRangeSchema.from_time_range(prior_range),
            new_range=TimeRangeSchema.from_time_range(new_range),
        )

    def modify_occurrence(
        self,
        record_type: str,
        record_id: int,
        values: Dict[str, Any],
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> OccurrenceResponse:
        """
        Edit the fields of one occurrence only.

        Values go through the same allowlist as series templates. The
        instance is marked modified unless it already carries an exception.

        Raises:
            NotFoundError: If the record does not exist
            DisallowedFieldError: If a value targets a non-editable field
        """
        if not values:
            raise ValidationError("No values to apply", field="values")

        try:
            instance = self.find_instance(record_type, record_id, lock=True)
            time_field = instance.series.time_field if instance else None
            self.template_validator.validate(record_type, values, time_field)

            if not self.entity_store.set_fields(record_type, record_id, values):
                raise NotFoundError(record_type, record_id)

            if instance is not None and not instance.is_exception:
                instance.mark_exception(ExceptionType.MODIFIED, actor=actor, reason=reason)
                self.db.flush()

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Modified {record_type} #{record_id} "
            f"({', '.join(sorted(values))})"
        )
        return OccurrenceResponse(
            message="Occurrence modified" if instance else "Record modified (not part of a series)",
            series_id=instance.series_id if instance else None,
            occurrence_date=instance.occurrence_date if instance else None,
        )

    # =========================================================================
    # Orphan cleanup
    # =========================================================================

    def cleanup_orphaned_instance(self, record_type: str, record_id: int) -> None:
        """
        Pre-delete hook: cancel the instance of a record being deleted.

        Runs inside the deleting caller's transaction and never commits.
        Database failures are logged and re-raised so the delete aborts.
        """
        try:
            instance = self.find_instance(record_type, record_id)
            if instance is None:
                return

            instance.record_id = None
            instance.mark_exception(ExceptionType.CANCELLED, reason=ORPHAN_REASON)
            self.db.flush()
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to clean up instance of {record_type} #{record_id}: {e}"
            )
            raise

        logger.warning(
            f"{record_type} #{record_id} deleted outside its series; "
            f"occurrence {instance.occurrence_date} of series {instance.series_id} "
            "marked cancelled"
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_membership(self, record_type: str, record_id: int) -> MembershipResponse:
        """Report whether a record belongs to a series, and where."""
        instance = self.find_instance(record_type, record_id)
        if instance is None:
            return MembershipResponse(is_member=False)

        series = instance.series
        group = series.group
        return MembershipResponse(
            is_member=True,
            series_id=series.id,
            series_guid=series.guid,
            group_id=group.id if group else None,
            group_guid=group.guid if group else None,
            group_name=group.display_name if group else None,
            group_color=group.color if group else None,
            occurrence_date=instance.occurrence_date,
            is_exception=instance.is_exception,
            exception_type=instance.exception_type,
            original_template=dict(series.template or {}),
        )

    def list_instances(
        self,
        group_id: int,
        instance_filter: InstanceFilter = InstanceFilter.ALL,
        today=None,
    ) -> List[SeriesInstance]:
        """
        List the instances of every version in a group.

        ``upcoming`` and ``past`` split on ``today`` (UTC date by default).

        Raises:
            NotFoundError: If group not found
        """
        if not self.db.query(SeriesGroup.id).filter(SeriesGroup.id == group_id).first():
            raise NotFoundError("Series group", group_id)

        today = today or datetime.utcnow().date()
        query = (
            self.db.query(SeriesInstance)
            .join(Series, SeriesInstance.series_id == Series.id)
            .filter(Series.group_id == group_id)
        )

        if instance_filter == InstanceFilter.UPCOMING:
            query = query.filter(SeriesInstance.occurrence_date >= today)
        elif instance_filter == InstanceFilter.PAST:
            query = query.filter(SeriesInstance.occurrence_date < today)
        elif instance_filter == InstanceFilter.EXCEPTIONS:
            query = query.filter(SeriesInstance.is_exception.is_(True))

        return query.order_by(SeriesInstance.occurrence_date, SeriesInstance.id).all()

    def list_series_instances(self, series_id: int) -> List[SeriesInstance]:
        """
        List the instances of one series version.

        Raises:
            NotFoundError: If series not found
        """
        series = self.db.query(Series).filter(Series.id == series_id).first()
        if series is None:
            raise NotFoundError("Series", series_id)
        return list(series.instances)


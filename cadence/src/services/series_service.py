"""
Series and group management service.

Provides:
- Series creation (group + version 1) with optional queued expansion
- Explicit expansion requests
- Split from date ("edit this and future") into a new version
- Template propagation ("edit all") to generated records
- Full schedule replacement
- Series and group deletion, together with their records

Design:
- Every mutating method is one transaction: commit at the end, rollback on
  any error, so callers never observe a half-applied split or delete
- Series versions are append-only; a split closes the current version and
  opens the next one inside the same group
- Expansion is asynchronous; methods only enqueue (series_id, until) work
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func
from sqlalchemy.orm import Session

from cadence.src.config.settings import get_settings
from cadence.src.models import (
    Series,
    SeriesGroup,
    SeriesInstance,
    SeriesStatus,
    series_deletion,
)
from cadence.src.schemas.recurring import (
    DeleteResponse,
    ExpandResponse,
    GroupInfoResponse,
    ScheduleUpdateResponse,
    SeriesCreateResponse,
    SplitResponse,
    TemplateUpdateResponse,
)
from cadence.src.services.entity_store import EntityStore, SqlEntityStore
from cadence.src.services.exceptions import (
    MissingFieldError,
    NotFoundError,
    ValidationError,
)
from cadence.src.services.field_metadata import FieldMetadataSource, SqlFieldMetadataSource
from cadence.src.services.job_sink import DatabaseJobSink, JobSink
from cadence.src.services.recurrence_expander import (
    end_of_local_day,
    expand_occurrences,
    local_date_of,
)
from cadence.src.services.rule_validation import (
    parse_rule_parts,
    set_rule_until,
    strip_rule_prefix,
    validate_rrule,
)
from cadence.src.services.template_validation import TemplateValidator
from cadence.src.utils.logging_config import get_logger
from cadence.src.utils.time_ranges import to_utc_naive


logger = get_logger("services")

COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
DEFAULT_GROUP_NAME = "Recurring Schedule"
_COUNT_PATTERN = re.compile(r"COUNT=\d+", re.IGNORECASE)


class SeriesService:
    """
    Service for recurring series and series groups.

    Usage:
        >>> service = SeriesService(db_session)
        >>> result = service.create_series(
        ...     group_name="Tuesday Yoga",
        ...     record_type="reservations",
        ...     template={"resource_id": 5},
        ...     rrule="FREQ=WEEKLY;BYDAY=TU;COUNT=12",
        ...     anchor_start=datetime(2026, 3, 3, 17, 0),
        ...     duration=timedelta(hours=1),
        ... )
        >>> service.split_series(result.series_id, date(2026, 4, 7), datetime(2026, 4, 7, 18, 0))
    """

    def __init__(
        self,
        db: Session,
        entity_store: Optional[EntityStore] = None,
        field_metadata: Optional[FieldMetadataSource] = None,
        job_sink: Optional[JobSink] = None,
    ):
        """
        Initialize the series service.

        Args:
            db: SQLAlchemy database session
            entity_store: Record store (defaults to SqlEntityStore on db)
            field_metadata: Field metadata (defaults to SqlFieldMetadataSource on db)
            job_sink: Expansion job sink (defaults to DatabaseJobSink on db)
        """
        self.db = db
        self.entity_store = entity_store or SqlEntityStore(db)
        self.field_metadata = field_metadata or SqlFieldMetadataSource(db)
        self.job_sink = job_sink or DatabaseJobSink(db)
        self.template_validator = TemplateValidator(self.field_metadata)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_series(self, series_id: int) -> Series:
        """
        Get a series by internal ID.

        Raises:
            NotFoundError: If series not found
        """
        series = self.db.query(Series).filter(Series.id == series_id).first()
        if not series:
            raise NotFoundError("Series", series_id)
        return series

    def get_series_by_guid(self, guid: str) -> Series:
        """
        Get a series by GUID (rsr_xxx).

        Raises:
            NotFoundError: If the GUID is malformed or the series not found
        """
        try:
            uuid_value = Series.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Series", guid)

        series = self.db.query(Series).filter(Series.uuid == uuid_value).first()
        if not series:
            raise NotFoundError("Series", guid)
        return series

    def get_group(self, group_id: int) -> SeriesGroup:
        """
        Get a series group by internal ID.

        Raises:
            NotFoundError: If group not found
        """
        group = self.db.query(SeriesGroup).filter(SeriesGroup.id == group_id).first()
        if not group:
            raise NotFoundError("Series group", group_id)
        return group

    def get_group_by_guid(self, guid: str) -> SeriesGroup:
        """
        Get a series group by GUID (rsg_xxx).

        Raises:
            NotFoundError: If the GUID is malformed or the group not found
        """
        try:
            uuid_value = SeriesGroup.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Series group", guid)

        group = self.db.query(SeriesGroup).filter(SeriesGroup.uuid == uuid_value).first()
        if not group:
            raise NotFoundError("Series group", guid)
        return group

    def _lock_series(self, series_id: int) -> Series:
        """Load a series with a row lock (no-op on SQLite)."""
        series = (
            self.db.query(Series)
            .filter(Series.id == series_id)
            .with_for_update()
            .first()
        )
        if not series:
            raise NotFoundError("Series", series_id)
        return series

    # =========================================================================
    # Validation helpers
    # =========================================================================

    @staticmethod
    def _require(**values: Any) -> None:
        for name, value in values.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingFieldError(name)

    @staticmethod
    def _validate_duration(duration: timedelta, field: str = "duration") -> None:
        if duration <= timedelta(0):
            raise ValidationError("Duration must be positive", field=field)

    @staticmethod
    def _validate_timezone(tz_name: Optional[str]) -> None:
        if tz_name is None:
            return
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"Unknown timezone: {tz_name}", field="timezone")

    @staticmethod
    def _validate_color(color: Optional[str]) -> Optional[str]:
        if color is None or color == "":
            return None
        if not COLOR_PATTERN.match(color):
            raise ValidationError("Color must be hex format like #RRGGBB", field="color")
        return color

    @staticmethod
    def _horizon_date() -> date:
        return datetime.utcnow().date() + timedelta(days=get_settings().expansion_horizon_days)

    # =========================================================================
    # Create / Expand
    # =========================================================================

    def create_series(
        self,
        group_name: str,
        record_type: Optional[str] = None,
        template: Optional[Dict[str, Any]] = None,
        rrule: Optional[str] = None,
        anchor_start: Optional[datetime] = None,
        duration: Optional[timedelta] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
        timezone: Optional[str] = None,
        time_field: Optional[str] = None,
        expand_now: bool = True,
        created_by: Optional[str] = None,
    ) -> SeriesCreateResponse:
        """
        Create a series group together with its first series version.

        Args:
            group_name: Display name of the new group
            record_type: Record type each occurrence is created as
            template: Field/value map stamped onto each record
            rrule: Recurrence rule
            anchor_start: First occurrence start (naive = UTC)
            duration: Length of each occurrence
            description: Optional group description
            color: Optional group color (#RRGGBB)
            timezone: IANA timezone for wall-clock expansion
            time_field: Time-range field on the record type
            expand_now: Queue expansion up to the configured horizon
            created_by: Actor creating the series

        Returns:
            SeriesCreateResponse with group/series ids and GUIDs

        Raises:
            MissingFieldError: If record_type, rrule, anchor_start or duration is absent
            InvalidRuleError / UnsupportedFrequencyError: If the rule is rejected
            DisallowedFieldError: If the template has a non-editable field
            NotFoundError: If the record type does not exist
            ValidationError: For bad color, timezone or duration
        """
        self._require(
            group_name=group_name,
            record_type=record_type,
            rrule=rrule,
            anchor_start=anchor_start,
            duration=duration,
        )
        validate_rrule(rrule)
        self._validate_duration(duration)
        self._validate_timezone(timezone)
        color = self._validate_color(color)

        time_field = time_field or get_settings().default_time_field
        template = dict(template or {})
        self.template_validator.validate(record_type, template, time_field)

        try:
            group = SeriesGroup(
                display_name=group_name.strip(),
                description=description,
                color=color,
                created_by=created_by,
            )
            self.db.add(group)
            self.db.flush()

            series = Series(
                group_id=group.id,
                version_number=1,
                effective_from=local_date_of(anchor_start, timezone),
                effective_until=None,
                record_type=record_type,
                template=template,
                rrule=strip_rule_prefix(rrule),
                anchor_start=to_utc_naive(anchor_start),
                duration=duration,
                timezone=timezone,
                time_field=time_field,
                status=SeriesStatus.ACTIVE.value,
                created_by=created_by,
            )
            self.db.add(series)
            self.db.flush()

            job_id = None
            if expand_now:
                job_id = self.job_sink.enqueue_expansion(series.id, self._horizon_date())

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Created series {series.id} (group {group.id}, '{group.display_name}') "
            f"for {record_type}: {series.rrule}"
        )
        return SeriesCreateResponse(
            group_id=group.id,
            group_guid=group.guid,
            series_id=series.id,
            series_guid=series.guid,
            job_id=job_id,
            message="Series created" + (" and expansion queued" if expand_now else ""),
        )

    def expand_series_instances(self, series_id: int, until: date) -> ExpandResponse:
        """
        Queue materialization of a series through ``until``.

        The series high-water mark only moves forward.

        Raises:
            NotFoundError: If series not found
        """
        series = self.get_series(series_id)

        try:
            if series.expanded_until is None or until > series.expanded_until:
                series.expanded_until = until
            job_id = self.job_sink.enqueue_expansion(series.id, until)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Queued expansion of series {series_id} until {until}")
        return ExpandResponse(
            series_id=series_id,
            expand_until=until,
            job_id=job_id,
            message="Expansion job queued",
        )

    # =========================================================================
    # Split
    # =========================================================================

    def _remaining_rule(self, series: Series, split_date: date) -> str:
        """
        Rule for the version opened by a split.

        A COUNT clause is reduced by the occurrences the closed version keeps,
        so the schedule as a whole still produces the original total.
        """
        parts = parse_rule_parts(series.rrule)
        if "COUNT" not in parts:
            return series.rrule

        kept = expand_occurrences(
            series.rrule,
            series.anchor_start,
            series.duration,
            series.timezone,
            end_of_local_day(split_date - timedelta(days=1), series.timezone),
            max_occurrences=int(parts["COUNT"]),
        )
        remaining = int(parts["COUNT"]) - len(kept)
        if remaining <= 0:
            raise ValidationError(
                f"Series {series.id} has no occurrences on or after {split_date}",
                field="split_date",
            )
        return _COUNT_PATTERN.sub(f"COUNT={remaining}", series.rrule)

    def split_series(
        self,
        series_id: int,
        split_date: date,
        new_anchor_start: datetime,
        new_duration: Optional[timedelta] = None,
        template_delta: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> SplitResponse:
        """
        Split a series at ``split_date`` ("edit this and future").

        Closes the series on the day before the split, opens the next version
        in its group from the split date, and moves every instance dated on
        or after the split to the new version. Standalone series get a group
        first and become its version 1.

        Only the current version can be split, and the split date must fall
        strictly after its ``effective_from``. This is stricter than a plain
        re-point: a split on the first day would close the version with an
        empty window, so it is rejected rather than accepted; use
        update_series_template or update_series_schedule for that case.

        Args:
            series_id: Series to split (must be the current version)
            split_date: First date governed by the new version
            new_anchor_start: Anchor of the new version
            new_duration: Occurrence length of the new version (default: unchanged)
            template_delta: Fields overriding the old template (delta wins)
            actor: Actor performing the split

        Returns:
            SplitResponse with original/new series ids and group id

        Raises:
            NotFoundError: If series not found
            ValidationError: If the series is closed or the split date does
                not fall after the version's first date
            DisallowedFieldError: If the merged template is rejected
        """
        self._require(split_date=split_date, new_anchor_start=new_anchor_start)
        if new_duration is not None:
            self._validate_duration(new_duration, field="new_duration")

        try:
            series = self._lock_series(series_id)

            if not series.is_current:
                raise ValidationError(
                    f"Series {series_id} was closed on {series.effective_until} "
                    "and cannot be split",
                    field="series_id",
                )
            if split_date <= series.effective_from:
                raise ValidationError(
                    f"Split date must be after {series.effective_from}",
                    field="split_date",
                )

            merged_template = dict(series.template or {})
            if template_delta:
                merged_template.update(template_delta)
                self.template_validator.validate(
                    series.record_type, merged_template, series.time_field
                )

            new_rule = self._remaining_rule(series, split_date)

            if series.group_id is None:
                group = SeriesGroup(
                    display_name=(series.template or {}).get("purpose") or DEFAULT_GROUP_NAME,
                    created_by=actor,
                )
                self.db.add(group)
                self.db.flush()
                series.group_id = group.id
                series.version_number = 1
                self.db.flush()
            else:
                group = (
                    self.db.query(SeriesGroup)
                    .filter(SeriesGroup.id == series.group_id)
                    .with_for_update()
                    .one()
                )

            max_version = (
                self.db.query(func.max(Series.version_number))
                .filter(Series.group_id == group.id)
                .scalar()
            )
            next_version = (max_version or 0) + 1

            series.effective_until = split_date - timedelta(days=1)
            series.rrule = set_rule_until(series.rrule, series.effective_until, series.timezone)

            new_series = Series(
                group_id=group.id,
                version_number=next_version,
                effective_from=split_date,
                effective_until=None,
                record_type=series.record_type,
                template=merged_template,
                rrule=new_rule,
                anchor_start=to_utc_naive(new_anchor_start),
                duration=new_duration or series.duration,
                timezone=series.timezone,
                time_field=series.time_field,
                status=SeriesStatus.ACTIVE.value,
                expanded_until=series.expanded_until,
                created_by=actor,
            )
            self.db.add(new_series)
            self.db.flush()

            moving = (
                self.db.query(SeriesInstance)
                .filter(
                    SeriesInstance.series_id == series.id,
                    SeriesInstance.occurrence_date >= split_date,
                )
                .with_for_update()
                .all()
            )
            for instance in moving:
                instance.series = new_series
            self.db.flush()

            expand_until = max(new_series.expanded_until or split_date, self._horizon_date())
            self.job_sink.enqueue_expansion(new_series.id, expand_until)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Split series {series_id} at {split_date}: version {next_version} "
            f"is series {new_series.id}, moved {len(moving)} instance(s)"
        )
        return SplitResponse(
            original_series_id=series.id,
            new_series_id=new_series.id,
            new_series_guid=new_series.guid,
            group_id=group.id,
            group_guid=group.guid,
            split_date=split_date,
            message=f"Series split; version {next_version} starts {split_date}",
        )

    # =========================================================================
    # Template / Schedule / Group info updates
    # =========================================================================

    def update_series_template(
        self,
        series_id: int,
        template_delta: Dict[str, Any],
        skip_exceptions: bool = True,
        actor: Optional[str] = None,
    ) -> TemplateUpdateResponse:
        """
        Merge a delta onto a series template and push it to generated records.

        Every record of the series is re-stamped with the whole merged
        template, so records moved in by a split take on this version's
        values too. Records of exception instances are left alone unless
        ``skip_exceptions`` is False. The time-range field is never pushed.

        Returns:
            TemplateUpdateResponse with the number of records updated

        Raises:
            NotFoundError: If series not found
            DisallowedFieldError: If the merged template is rejected
        """
        template_delta = template_delta or {}

        try:
            series = self._lock_series(series_id)
            merged = {**(series.template or {}), **template_delta}
            self.template_validator.validate(series.record_type, merged, series.time_field)

            series.template = merged
            series.template_updated_at = datetime.utcnow()
            series.template_updated_by = actor

            pushed = {k: v for k, v in merged.items() if k != series.time_field}
            query = self.db.query(SeriesInstance).filter(
                SeriesInstance.series_id == series.id,
                SeriesInstance.record_id.isnot(None),
            )
            if skip_exceptions:
                query = query.filter(SeriesInstance.is_exception.is_(False))

            instances_updated = 0
            for instance in query.order_by(SeriesInstance.occurrence_date).all():
                if self.entity_store.set_fields(instance.record_type, instance.record_id, pushed):
                    instances_updated += 1

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Updated template of series {series_id} "
            f"(changed: {', '.join(sorted(template_delta)) or 'nothing'}); "
            f"{instances_updated} record(s) updated"
        )
        return TemplateUpdateResponse(
            series_id=series_id,
            instances_updated=instances_updated,
            message=f"Template updated for {instances_updated} occurrence(s)",
        )

    def update_series_schedule(
        self,
        series_id: int,
        anchor_start: datetime,
        duration: timedelta,
        rrule: str,
    ) -> ScheduleUpdateResponse:
        """
        Replace the rule, anchor and duration of a series.

        Every non-exception occurrence is deleted together with its record;
        exceptions and their records are kept. Expansion is re-queued from
        today to the configured horizon.

        Returns:
            ScheduleUpdateResponse with deleted record count and new horizon

        Raises:
            NotFoundError: If series not found
            MissingFieldError / InvalidRuleError / UnsupportedFrequencyError
        """
        self._require(anchor_start=anchor_start, duration=duration, rrule=rrule)
        validate_rrule(rrule)
        self._validate_duration(duration)

        try:
            series = self._lock_series(series_id)

            regular = (
                self.db.query(SeriesInstance)
                .filter(
                    SeriesInstance.series_id == series.id,
                    SeriesInstance.is_exception.is_(False),
                )
                .with_for_update()
                .all()
            )
            record_refs = [
                (instance.record_type, instance.record_id)
                for instance in regular
                if instance.record_id is not None
            ]

            # Drop instances first so the store's pre-delete hook finds nothing
            for instance in regular:
                series.instances.remove(instance)
            self.db.flush()

            entities_deleted = sum(
                1 for record_type, record_id in record_refs
                if self.entity_store.delete(record_type, record_id)
            )

            series.anchor_start = to_utc_naive(anchor_start)
            series.duration = duration
            series.rrule = strip_rule_prefix(rrule)
            series.expanded_until = None
            series.effective_from = local_date_of(anchor_start, series.timezone)

            expand_until = self._horizon_date()
            job_id = self.job_sink.enqueue_expansion(series.id, expand_until)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Replaced schedule of series {series_id}: {series.rrule}; "
            f"deleted {entities_deleted} record(s), expansion queued until {expand_until}"
        )
        return ScheduleUpdateResponse(
            series_id=series_id,
            entities_deleted=entities_deleted,
            expand_until=expand_until,
            job_id=job_id,
            message=f"Schedule updated; {entities_deleted} occurrence(s) regenerated",
        )

    def update_series_group_info(
        self,
        group_id: int,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> GroupInfoResponse:
        """
        Update a group's display name, description and color.

        A blank display name keeps the current one; description and color
        are replaced as given.

        Raises:
            NotFoundError: If group not found
            ValidationError: If color is not #RRGGBB
        """
        color = self._validate_color(color)
        group = self.get_group(group_id)

        try:
            if display_name and display_name.strip():
                group.display_name = display_name.strip()
            group.description = description
            group.color = color
            group.updated_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(group)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Updated info of series group {group_id} ('{group.display_name}')")
        return GroupInfoResponse(
            group_id=group.id,
            group_guid=group.guid,
            display_name=group.display_name,
            description=group.description,
            color=group.color,
            updated_at=group.updated_at,
        )

    # =========================================================================
    # Deletion
    # =========================================================================

    def _delete_series(self, series: Series, delete_empty_group: bool = True) -> Tuple[int, bool]:
        """
        Delete a series, its instances and their records (no commit).

        Returns:
            (records deleted, whether the owning group was deleted)
        """
        record_refs = [
            (instance.record_type, instance.record_id)
            for instance in series.instances
            if instance.record_id is not None
        ]
        group = series.group

        with series_deletion(self.db):
            if group is not None:
                group.series.remove(series)
            self.db.delete(series)
            self.db.flush()

        entities_deleted = sum(
            1 for record_type, record_id in record_refs
            if self.entity_store.delete(record_type, record_id)
        )

        group_deleted = False
        if delete_empty_group and group is not None and not group.series:
            self.db.delete(group)
            self.db.flush()
            group_deleted = True

        return entities_deleted, group_deleted

    def delete_series(self, series_id: int) -> DeleteResponse:
        """
        Delete a series with its instances and their records.

        The owning group is deleted too when this was its last series.

        Raises:
            NotFoundError: If series not found
        """
        series = self.get_series(series_id)

        try:
            entities_deleted, group_deleted = self._delete_series(series)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Deleted series {series_id} and {entities_deleted} record(s)"
            + (" (group removed)" if group_deleted else "")
        )
        return DeleteResponse(
            entities_deleted=entities_deleted,
            group_deleted=group_deleted,
            message=f"Deleted series and {entities_deleted} record(s)",
        )

    def delete_group(self, group_id: int) -> DeleteResponse:
        """
        Delete a group, every series in it, and all their records.

        Raises:
            NotFoundError: If group not found
        """
        group = self.get_group(group_id)

        try:
            entities_deleted = 0
            with series_deletion(self.db):
                for series in list(group.series):
                    deleted, _ = self._delete_series(series, delete_empty_group=False)
                    entities_deleted += deleted
                self.db.delete(group)
                self.db.flush()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Deleted series group {group_id} and {entities_deleted} record(s)")
        return DeleteResponse(
            entities_deleted=entities_deleted,
            group_deleted=True,
            message=f"Deleted group and {entities_deleted} record(s)",
        )

"""
Unit tests for InstanceService.

Tests per-occurrence cancel, reschedule and modify, orphan cleanup,
membership lookups and instance listings.
"""

import pytest
from datetime import date, datetime

from cadence.src.models import ExceptionType, SeriesInstance
from cadence.src.schemas.recurring import InstanceFilter
from cadence.src.services.exceptions import (
    DisallowedFieldError,
    NotFoundError,
    RecordConflictError,
    ValidationError,
)
from cadence.src.services.instance_service import ORPHAN_REASON
from cadence.src.services.record_service import RecordService
from cadence.src.utils.time_ranges import TimeRange


WEDNESDAY_AFTERNOON = TimeRange(datetime(2026, 3, 4, 14, 0), datetime(2026, 3, 4, 15, 0))


# ============================================================================
# Cancel
# ============================================================================


class TestCancelOccurrence:
    """Tests for cancel_occurrence."""

    def test_cancel_keeps_instance_and_deletes_record(
        self, sample_series, instance_service, entity_store, test_db_session
    ):
        """Test cancelling nulls the record reference and deletes the record."""
        series = sample_series()
        instance = series.instances[1]
        record_id = instance.record_id

        result = instance_service.cancel_occurrence(
            "reservations", record_id, reason="Public holiday", actor="bob"
        )

        assert result.message == "Occurrence cancelled"
        assert result.series_id == series.id
        assert result.occurrence_date == date(2026, 3, 4)

        test_db_session.refresh(instance)
        assert instance.record_id is None
        assert instance.is_exception is True
        assert instance.exception_type == ExceptionType.CANCELLED.value
        assert instance.exception_reason == "Public holiday"
        assert instance.exception_by == "bob"
        assert entity_store.get("reservations", record_id) is None

    def test_cancel_twice_succeeds(self, sample_series, instance_service):
        """Test a second cancel of the same record is a successful no-op."""
        series = sample_series()
        record_id = series.instances[0].record_id
        instance_service.cancel_occurrence("reservations", record_id)

        result = instance_service.cancel_occurrence("reservations", record_id)

        assert result.message == "Record already removed"
        assert result.series_id is None

    def test_cancel_record_outside_series(
        self, instance_service, entity_store, test_db_session, reservations
    ):
        """Test a record with no series is simply deleted."""
        record_id = entity_store.create(
            "reservations", {"resource_id": 5}, "time_slot", WEDNESDAY_AFTERNOON
        )
        test_db_session.commit()

        result = instance_service.cancel_occurrence("reservations", record_id)

        assert result.message == "Record deleted (not part of a series)"
        assert entity_store.get("reservations", record_id) is None

    def test_cancelled_instance_blocks_regeneration(
        self, sample_series, series_service, instance_service, expansion_worker
    ):
        """Test expanding again does not recreate a cancelled occurrence."""
        series = sample_series()
        instance_service.cancel_occurrence("reservations", series.instances[0].record_id)

        series_service.expand_series_instances(series.id, date(2026, 3, 31))
        expansion_worker.run_pending()

        instances = series_service.get_series(series.id).instances
        assert len(instances) == 12
        assert instances[0].record_id is None


# ============================================================================
# Reschedule
# ============================================================================


class TestRescheduleOccurrence:
    """Tests for reschedule_occurrence."""

    def test_reschedule_moves_record_and_snapshots(
        self, sample_series, instance_service, entity_store, test_db_session
    ):
        """Test the prior range is kept on the instance."""
        series = sample_series()
        instance = series.instances[1]
        record_id = instance.record_id

        result = instance_service.reschedule_occurrence(
            "reservations", record_id, WEDNESDAY_AFTERNOON, actor="carol"
        )

        assert result.message == "Occurrence rescheduled"
        assert result.prior_range.start == datetime(2026, 3, 4, 9, 0)
        assert result.new_range.start == datetime(2026, 3, 4, 14, 0)
        assert entity_store.get_time_range("reservations", record_id) == WEDNESDAY_AFTERNOON

        test_db_session.refresh(instance)
        assert instance.exception_type == ExceptionType.RESCHEDULED.value
        assert instance.original_start == datetime(2026, 3, 4, 9, 0)
        assert instance.original_end == datetime(2026, 3, 4, 10, 0)
        assert len(instance.reschedule_history) == 1
        assert instance.reschedule_history[0]["replaced_by"] == "carol"

    def test_reschedule_twice_keeps_history(self, sample_series, instance_service, test_db_session):
        """Test every prior range is appended to the history."""
        series = sample_series()
        instance = series.instances[1]
        record_id = instance.record_id
        instance_service.reschedule_occurrence("reservations", record_id, WEDNESDAY_AFTERNOON)

        instance_service.reschedule_occurrence(
            "reservations", record_id,
            TimeRange(datetime(2026, 3, 4, 16, 0), datetime(2026, 3, 4, 17, 0)),
        )

        test_db_session.refresh(instance)
        assert instance.original_start == datetime(2026, 3, 4, 14, 0)
        assert len(instance.reschedule_history) == 2

    def test_rescheduled_occurrence_excluded_from_template_update(
        self, sample_series, series_service, instance_service, entity_store
    ):
        """Test an "edit all" leaves a rescheduled occurrence alone."""
        series = sample_series()
        record_id = series.instances[1].record_id
        instance_service.reschedule_occurrence("reservations", record_id, WEDNESDAY_AFTERNOON)

        result = series_service.update_series_template(series.id, {"purpose": "Retro"})

        assert result.instances_updated == 11
        assert entity_store.get("reservations", record_id).fields["purpose"] == "Standup"

    def test_reschedule_missing_record(self, instance_service, reservations):
        """Test rescheduling an unknown record raises NotFoundError."""
        with pytest.raises(NotFoundError):
            instance_service.reschedule_occurrence("reservations", 999, WEDNESDAY_AFTERNOON)

    def test_reschedule_into_taken_slot(
        self, sample_record_type, sample_series, instance_service, entity_store, test_db_session
    ):
        """Test an exclusive scope rejects the move and nothing changes."""
        sample_record_type(exclusive_scope_field="resource_id")
        series = sample_series()
        instance = series.instances[1]

        # Friday's occurrence occupies 09:00-10:00 on 6 March
        with pytest.raises(RecordConflictError):
            instance_service.reschedule_occurrence(
                "reservations", instance.record_id,
                TimeRange(datetime(2026, 3, 6, 9, 30), datetime(2026, 3, 6, 10, 30)),
            )

        test_db_session.refresh(instance)
        assert instance.is_exception is False
        assert instance.original_start is None


# ============================================================================
# Modify
# ============================================================================


class TestModifyOccurrence:
    """Tests for modify_occurrence."""

    def test_modify_marks_exception(self, sample_series, instance_service, entity_store, test_db_session):
        """Test editing one occurrence marks it modified."""
        series = sample_series()
        instance = series.instances[0]

        result = instance_service.modify_occurrence(
            "reservations", instance.record_id, {"notes": "Bring slides"}, reason="Demo day"
        )

        assert result.message == "Occurrence modified"
        record = entity_store.get("reservations", instance.record_id)
        assert record.fields["notes"] == "Bring slides"
        test_db_session.refresh(instance)
        assert instance.exception_type == ExceptionType.MODIFIED.value
        assert instance.exception_reason == "Demo day"

    def test_modify_keeps_existing_exception_type(
        self, sample_series, instance_service, test_db_session
    ):
        """Test a rescheduled occurrence stays rescheduled after an edit."""
        series = sample_series()
        instance = series.instances[1]
        instance_service.reschedule_occurrence("reservations", instance.record_id, WEDNESDAY_AFTERNOON)

        instance_service.modify_occurrence("reservations", instance.record_id, {"notes": "Moved"})

        test_db_session.refresh(instance)
        assert instance.exception_type == ExceptionType.RESCHEDULED.value

    def test_modify_disallowed_field(self, sample_series, instance_service):
        """Test non-editable fields are rejected."""
        series = sample_series()

        with pytest.raises(DisallowedFieldError):
            instance_service.modify_occurrence(
                "reservations", series.instances[0].record_id, {"status": "void"}
            )

    def test_modify_requires_values(self, sample_series, instance_service):
        """Test an empty edit is rejected."""
        series = sample_series()

        with pytest.raises(ValidationError):
            instance_service.modify_occurrence("reservations", series.instances[0].record_id, {})

    def test_modify_missing_record(self, instance_service, reservations):
        """Test editing an unknown record raises NotFoundError."""
        with pytest.raises(NotFoundError):
            instance_service.modify_occurrence("reservations", 999, {"notes": "x"})


# ============================================================================
# Orphan cleanup
# ============================================================================


class TestOrphanCleanup:
    """Tests for cleanup_orphaned_instance via direct record deletes."""

    def test_direct_delete_cancels_instance(
        self, sample_series, instance_service, test_db_session
    ):
        """Test deleting a member record elsewhere leaves a cancelled instance."""
        series = sample_series()
        instance = series.instances[2]
        record_id = instance.record_id

        RecordService(test_db_session, entity_store=instance_service.entity_store).delete_record(
            "reservations", record_id
        )

        test_db_session.refresh(instance)
        assert instance.record_id is None
        assert instance.exception_type == ExceptionType.CANCELLED.value
        assert instance.exception_reason == ORPHAN_REASON

    def test_hook_ignores_non_members(self, instance_service, reservations):
        """Test the hook does nothing for records outside any series."""
        instance_service.cleanup_orphaned_instance("reservations", 999)

    def test_hook_registration_optional(self, test_db_session, entity_store):
        """Test the orphan hook is registered only on request."""
        from cadence.src.services.instance_service import InstanceService

        service = InstanceService(test_db_session, entity_store=entity_store, register_orphan_hook=False)

        assert service.cleanup_orphaned_instance not in entity_store._pre_delete_hooks


# ============================================================================
# Queries
# ============================================================================


class TestMembership:
    """Tests for get_membership."""

    def test_member(self, sample_series, instance_service):
        """Test membership reports the series, group and template."""
        series = sample_series(group_name="Standup", color="#00AA00")
        instance = series.instances[3]

        membership = instance_service.get_membership("reservations", instance.record_id)

        assert membership.is_member is True
        assert membership.series_id == series.id
        assert membership.series_guid == series.guid
        assert membership.group_name == "Standup"
        assert membership.group_color == "#00AA00"
        assert membership.occurrence_date == date(2026, 3, 9)
        assert membership.is_exception is False
        assert membership.original_template == {"resource_id": 5, "purpose": "Standup"}

    def test_non_member(self, instance_service, reservations):
        """Test unknown records are not members."""
        membership = instance_service.get_membership("reservations", 999)

        assert membership.is_member is False
        assert membership.series_id is None


class TestListInstances:
    """Tests for list_instances and list_series_instances."""

    @pytest.mark.parametrize("instance_filter,expected", [
        (InstanceFilter.ALL, 12),
        (InstanceFilter.UPCOMING, 6),
        (InstanceFilter.PAST, 6),
    ])
    def test_date_filters(self, sample_series, instance_service, instance_filter, expected):
        """Test upcoming/past split on the given day."""
        series = sample_series()

        instances = instance_service.list_instances(
            series.group_id, instance_filter, today=date(2026, 3, 16)
        )

        assert len(instances) == expected

    def test_exceptions_filter(self, sample_series, instance_service):
        """Test only exceptions are listed with the exceptions filter."""
        series = sample_series()
        instance_service.cancel_occurrence("reservations", series.instances[4].record_id)

        instances = instance_service.list_instances(series.group_id, InstanceFilter.EXCEPTIONS)

        assert [i.occurrence_date for i in instances] == [date(2026, 3, 11)]

    def test_lists_every_version(self, sample_series, series_service, instance_service):
        """Test group listings span all versions, ordered by date."""
        series = sample_series()
        series_service.split_series(series.id, date(2026, 3, 16), datetime(2026, 3, 16, 9, 0))

        instances = instance_service.list_instances(series.group_id)

        dates = [i.occurrence_date for i in instances]
        assert len(dates) == 12
        assert dates == sorted(dates)
        assert len({i.series_id for i in instances}) == 2

    def test_list_series_instances(self, sample_series, instance_service):
        """Test listing one version."""
        series = sample_series(expand_until=date(2026, 3, 8))

        instances = instance_service.list_series_instances(series.id)

        assert all(isinstance(i, SeriesInstance) for i in instances)
        assert len(instances) == 3

    def test_missing_ids(self, instance_service):
        """Test unknown group and series ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            instance_service.list_instances(999)
        with pytest.raises(NotFoundError):
            instance_service.list_series_instances(999)

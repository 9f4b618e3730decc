"""
Unit tests for ExpansionWorker.

Tests job claiming, materialization, conflict skipping, schema drift
handling and retry behaviour.
"""

import pytest
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

from cadence.src.models import (
    ExceptionType,
    ExpansionJob,
    ExpansionJobStatus,
    SeriesInstance,
    SeriesStatus,
)
from cadence.src.services.expansion_worker import ExpansionWorker
from cadence.src.utils.time_ranges import TimeRange


def _jobs_for(db, series_id):
    return (
        db.query(ExpansionJob)
        .filter(ExpansionJob.series_id == series_id)
        .order_by(ExpansionJob.id)
        .all()
    )


class TestClaimNext:
    """Tests for claim_next."""

    def test_empty_queue(self, expansion_worker):
        """Test claiming from an empty queue returns None."""
        assert expansion_worker.claim_next() is None

    def test_claim_marks_running(self, sample_series, series_service, expansion_worker):
        """Test a claimed job is running with one attempt used."""
        series = sample_series(expand_until=None)
        series_service.expand_series_instances(series.id, date(2026, 3, 31))

        job = expansion_worker.claim_next()

        assert job.status == ExpansionJobStatus.RUNNING.value
        assert job.attempts == 1
        assert job.started_at is not None
        assert expansion_worker.claim_next() is None

    def test_oldest_first(self, sample_series, series_service, expansion_worker):
        """Test jobs are claimed in enqueue order."""
        first = sample_series(group_name="First", expand_until=None)
        second = sample_series(group_name="Second", expand_until=None)
        series_service.expand_series_instances(first.id, date(2026, 3, 31))
        series_service.expand_series_instances(second.id, date(2026, 3, 31))

        assert expansion_worker.claim_next().series_id == first.id
        assert expansion_worker.claim_next().series_id == second.id


class TestProcessJob:
    """Tests for process_job and run_pending."""

    def test_result_counts(self, sample_series, test_db_session):
        """Test a completed job reports what it created."""
        series = sample_series()

        job = _jobs_for(test_db_session, series.id)[-1]
        assert job.status == ExpansionJobStatus.COMPLETED.value
        assert job.result_json == {
            "created": 12,
            "conflict_skipped": 0,
            "skipped_existing": 0,
            "truncated": False,
            "expanded_until": "2026-03-31",
        }
        assert job.completed_at is not None

    def test_rerun_is_idempotent(self, sample_series, series_service, expansion_worker, test_db_session):
        """Test expanding to the same date again creates nothing."""
        series = sample_series()

        series_service.expand_series_instances(series.id, date(2026, 3, 31))
        expansion_worker.run_pending()

        job = _jobs_for(test_db_session, series.id)[-1]
        assert job.result_json["created"] == 0
        assert job.result_json["skipped_existing"] == 12
        assert test_db_session.query(SeriesInstance).count() == 12

    def test_incremental_expansion(self, sample_series, series_service, expansion_worker, test_db_session):
        """Test extending the window only adds the new occurrences."""
        series = sample_series(expand_until=date(2026, 3, 8))

        series_service.expand_series_instances(series.id, date(2026, 3, 15))
        expansion_worker.run_pending()

        job = _jobs_for(test_db_session, series.id)[-1]
        assert job.result_json["created"] == 3
        assert job.result_json["skipped_existing"] == 3
        assert series_service.get_series(series.id).expanded_until == date(2026, 3, 15)

    def test_wall_clock_kept_across_dst(self, sample_series, entity_store):
        """Test records follow local time when the offset changes."""
        series = sample_series(
            rrule="FREQ=DAILY;COUNT=10",
            anchor_start=datetime(2026, 3, 2, 14, 0),
            timezone="America/New_York",
        )

        by_date = {i.occurrence_date: i for i in series.instances}
        before = entity_store.get_time_range("reservations", by_date[date(2026, 3, 6)].record_id)
        after = entity_store.get_time_range("reservations", by_date[date(2026, 3, 9)].record_id)
        assert before.start == datetime(2026, 3, 6, 14, 0)
        assert after.start == datetime(2026, 3, 9, 13, 0)

    def test_conflicting_occurrence_skipped(
        self, sample_record_type, sample_series, entity_store, test_db_session
    ):
        """Test an occurrence rejected by the store becomes conflict_skipped."""
        sample_record_type(exclusive_scope_field="resource_id")
        blocker = entity_store.create(
            "reservations", {"resource_id": 5, "display_name": "Maintenance"}, "time_slot",
            TimeRange(datetime(2026, 3, 4, 9, 30), datetime(2026, 3, 4, 11, 0)),
        )
        test_db_session.commit()

        series = sample_series()

        skipped = [i for i in series.instances if i.exception_type == ExceptionType.CONFLICT_SKIPPED.value]
        assert [i.occurrence_date for i in skipped] == [date(2026, 3, 4)]
        assert skipped[0].record_id is None
        assert skipped[0].is_exception is True
        assert skipped[0].exception_reason == f"Time range conflicts with record #{blocker}"

        job = _jobs_for(test_db_session, series.id)[-1]
        assert job.result_json["created"] == 11
        assert job.result_json["conflict_skipped"] == 1

    def test_schema_drift_marks_series(self, sample_series, test_db_session):
        """Test a template missing a required field halts expansion."""
        series = sample_series(template={"purpose": "No resource"})

        assert series.status == SeriesStatus.NEEDS_ATTENTION.value
        assert series.occurrence_count == 0

        job = _jobs_for(test_db_session, series.id)[-1]
        assert job.status == ExpansionJobStatus.COMPLETED.value
        assert job.result_json["reason"] == "schema_drift"
        assert {"field": "resource_id", "issue": "Required field missing from template"} in (
            job.result_json["issues"]
        )

    def test_paused_series_skipped(self, sample_series, series_service, expansion_worker, test_db_session):
        """Test only active series are expanded."""
        series = sample_series(expand_until=None)
        series.status = SeriesStatus.PAUSED.value
        test_db_session.commit()

        series_service.expand_series_instances(series.id, date(2026, 3, 31))
        expansion_worker.run_pending()

        job = _jobs_for(test_db_session, series.id)[-1]
        assert job.result_json == {"created": 0, "reason": "series_paused"}
        assert series_service.get_series(series.id).occurrence_count == 0

    def test_run_pending_limit(self, sample_series, series_service, expansion_worker):
        """Test run_pending stops after limit jobs."""
        first = sample_series(group_name="First", expand_until=None)
        second = sample_series(group_name="Second", expand_until=None)
        series_service.expand_series_instances(first.id, date(2026, 3, 31))
        series_service.expand_series_instances(second.id, date(2026, 3, 31))

        assert expansion_worker.run_pending(limit=1) == 1
        assert expansion_worker.run_pending() == 1


class TestOccurrenceCap:
    """Tests for the per-job occurrence cap."""

    def test_capped_job_queues_remainder(
        self, monkeypatch, sample_series, series_service, expansion_worker, test_db_session
    ):
        """Test a job stopped by the cap records where it stopped and queues the rest."""
        monkeypatch.setenv("CADENCE_MAX_OCCURRENCES", "5")
        series = sample_series(rrule="FREQ=DAILY", expand_until=None)
        series_service.expand_series_instances(series.id, date(2026, 3, 31))

        job = expansion_worker.process_job(expansion_worker.claim_next())

        assert job.result_json["created"] == 5
        assert job.result_json["truncated"] is True
        assert series_service.get_series(series.id).expanded_until == date(2026, 3, 6)

        pending = _jobs_for(test_db_session, series.id)[-1]
        assert pending.id != job.id
        assert pending.status == ExpansionJobStatus.PENDING.value
        assert pending.expand_until == date(2026, 3, 31)

    def test_capped_jobs_drain_to_target(
        self, monkeypatch, sample_series, series_service, expansion_worker, test_db_session
    ):
        """Test continuation jobs pick up after the last materialized date."""
        monkeypatch.setenv("CADENCE_MAX_OCCURRENCES", "5")
        series = sample_series(rrule="FREQ=DAILY", expand_until=None)
        series_service.expand_series_instances(series.id, date(2026, 3, 31))

        assert expansion_worker.run_pending() == 6

        series = series_service.get_series(series.id)
        dates = sorted(i.occurrence_date for i in series.instances)
        assert len(dates) == 30
        assert dates[-1] == date(2026, 3, 31)
        assert series.expanded_until == date(2026, 3, 31)

    def test_long_daily_series_not_truncated(self, sample_series, series_service, expansion_worker):
        """Test a daily series keeps growing past the default cap."""
        target = date(2026, 3, 2) + timedelta(days=1099)
        series = sample_series(rrule="FREQ=DAILY", expand_until=target)

        dates = sorted(i.occurrence_date for i in series.instances)
        assert len(dates) == 1100
        assert dates[-1] == target
        assert series.expanded_until == target

        series_service.expand_series_instances(series.id, target + timedelta(days=10))
        expansion_worker.run_pending()

        assert series_service.get_series(series.id).occurrence_count == 1110

    def test_hourly_series_fills_horizon(self, sample_series):
        """Test an hourly rule covers a 90-day window, one instance per date."""
        series = sample_series(
            rrule="FREQ=HOURLY",
            expand_until=date(2026, 3, 2) + timedelta(days=89),
        )

        dates = sorted(i.occurrence_date for i in series.instances)
        assert len(dates) == 90
        assert dates[-1] == date(2026, 5, 30)


class TestRetries:
    """Tests for failure handling."""

    @pytest.fixture
    def failing_worker(self, test_db_session):
        store = MagicMock()
        store.create.side_effect = RuntimeError("store offline")
        return ExpansionWorker(test_db_session, entity_store=store)

    def test_failed_job_retried_then_failed(
        self, monkeypatch, sample_series, series_service, failing_worker, test_db_session
    ):
        """Test a job is retried up to max_attempts and then left failed."""
        monkeypatch.setenv("CADENCE_JOB_MAX_ATTEMPTS", "2")
        series = sample_series(expand_until=None)
        series_service.expand_series_instances(series.id, date(2026, 3, 31))

        processed = failing_worker.run_pending()

        job = _jobs_for(test_db_session, series.id)[-1]
        assert processed == 2
        assert job.status == ExpansionJobStatus.FAILED.value
        assert job.attempts == 2
        assert job.error_message == "store offline"
        assert test_db_session.query(SeriesInstance).count() == 0

    def test_failure_rolls_back_partial_work(
        self, sample_series, series_service, entity_store, test_db_session
    ):
        """Test instances created before the failure are discarded."""
        series = sample_series(expand_until=None)
        series_service.expand_series_instances(series.id, date(2026, 3, 31))

        store = MagicMock(wraps=entity_store)
        calls = {"count": 0}

        def create(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 3:
                raise RuntimeError("disk full")
            return entity_store.create(*args, **kwargs)

        store.create.side_effect = create
        worker = ExpansionWorker(test_db_session, entity_store=store)

        job = worker.process_job(worker.claim_next())

        assert job.status == ExpansionJobStatus.PENDING.value
        assert job.error_message == "disk full"
        assert test_db_session.query(SeriesInstance).count() == 0

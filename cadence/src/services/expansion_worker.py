"""
Expansion worker: materializes queued series expansions into records.

For each claimed job the worker expands the series rule up to the job's
date, and for every occurrence not yet tracked creates a record through the
entity store plus the instance row linking the two. Occurrences rejected by
an exclusive scope become conflict_skipped exceptions without a record.

A job creates at most CADENCE_MAX_OCCURRENCES new instances and queues a
continuation for the rest of its window.

Jobs are processed one transaction each. A failed job is retried until it
has used max_attempts, then left FAILED with the last error.
"""

from collections import Counter
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session, lazyload

from cadence.src.config.settings import get_settings
from cadence.src.models import (
    ExceptionType,
    ExpansionJob,
    ExpansionJobStatus,
    Series,
    SeriesInstance,
    SeriesStatus,
)
from cadence.src.services.entity_store import EntityStore, SqlEntityStore
from cadence.src.services.exceptions import RecordConflictError
from cadence.src.services.field_metadata import FieldMetadataSource, SqlFieldMetadataSource
from cadence.src.services.job_sink import EXPANSION_QUEUE, DatabaseJobSink, JobSink
from cadence.src.services.recurrence_expander import (
    end_of_local_day,
    iter_occurrences,
    start_of_local_day,
)
from cadence.src.services.template_validation import TemplateValidator
from cadence.src.utils.logging_config import get_logger


logger = get_logger("worker")

CONFLICT_REASON = "Time range conflicts with record #{record_id}"


class ExpansionWorker:
    """
    Claims and runs expansion jobs.

    Usage:
        >>> worker = ExpansionWorker(db_session)
        >>> worker.run_pending()
        3
    """

    def __init__(
        self,
        db: Session,
        entity_store: Optional[EntityStore] = None,
        field_metadata: Optional[FieldMetadataSource] = None,
        job_sink: Optional[JobSink] = None,
    ):
        self.db = db
        self.entity_store = entity_store or SqlEntityStore(db)
        self.job_sink = job_sink or DatabaseJobSink(db)
        self.template_validator = TemplateValidator(
            field_metadata or SqlFieldMetadataSource(db)
        )

    @property
    def _is_sqlite(self) -> bool:
        return self.db.bind.dialect.name == "sqlite"

    # =========================================================================
    # Claiming
    # =========================================================================

    def claim_next(self) -> Optional[ExpansionJob]:
        """
        Claim the oldest pending job and mark it running.

        Returns:
            The claimed job, or None when the queue is empty
        """
        query = (
            self.db.query(ExpansionJob)
            .filter(
                ExpansionJob.queue == EXPANSION_QUEUE,
                ExpansionJob.status == ExpansionJobStatus.PENDING.value,
            )
            .order_by(ExpansionJob.created_at.asc(), ExpansionJob.id.asc())
        )

        # FOR UPDATE SKIP LOCKED lets several workers drain the queue (not on SQLite)
        if not self._is_sqlite:
            query = query.options(lazyload('*')).with_for_update(skip_locked=True)

        job = query.first()
        if job is None:
            return None

        job.status = ExpansionJobStatus.RUNNING.value
        job.attempts += 1
        job.started_at = datetime.utcnow()
        self.db.commit()

        logger.debug(f"Claimed expansion job {job.id} (attempt {job.attempts})")
        return job

    # =========================================================================
    # Processing
    # =========================================================================

    def _complete(self, job: ExpansionJob, result: Dict[str, Any]) -> None:
        job.status = ExpansionJobStatus.COMPLETED.value
        job.result_json = result
        job.error_message = None
        job.completed_at = datetime.utcnow()

    def _expand(self, series: Series, job: ExpansionJob) -> Dict[str, Any]:
        """
        Create missing instances and records of a series (no commit).

        At most CADENCE_MAX_OCCURRENCES new instances are created per job.
        When more are due, the series high-water mark stops at the last
        materialized date and the rest of the window is queued again.
        """
        counts = Counter()
        limit = get_settings().max_occurrences
        occurrences = iter_occurrences(
            series.rrule,
            series.anchor_start,
            series.duration,
            series.timezone,
            end_of_local_day(job.expand_until, series.timezone),
            window_start=start_of_local_day(series.effective_from, series.timezone),
        )

        tracked = {
            row.occurrence_date
            for row in self.db.query(SeriesInstance.occurrence_date)
            .filter(SeriesInstance.series_id == series.id)
        }

        last_day = None
        truncated = False
        for occurrence in occurrences:
            day = occurrence.local_date
            if series.effective_until is not None and day > series.effective_until:
                break
            if day in tracked:
                counts["skipped_existing"] += 1
                continue
            if counts["created"] + counts["conflict_skipped"] >= limit:
                truncated = True
                break
            tracked.add(day)

            instance = SeriesInstance(
                series_id=series.id,
                occurrence_date=day,
                record_type=series.record_type,
            )
            try:
                instance.record_id = self.entity_store.create(
                    series.record_type,
                    dict(series.template or {}),
                    series.time_field,
                    occurrence,
                )
                counts["created"] += 1
            except RecordConflictError as e:
                instance.mark_exception(
                    ExceptionType.CONFLICT_SKIPPED,
                    reason=CONFLICT_REASON.format(record_id=e.conflicting_record_id),
                )
                counts["conflict_skipped"] += 1
                logger.warning(
                    f"Series {series.id}: occurrence {day} skipped, "
                    f"overlaps {e.record_type} #{e.conflicting_record_id}"
                )

            self.db.add(instance)
            self.db.flush()
            last_day = day

        if truncated:
            series.expanded_until = last_day
            continuation_id = self.job_sink.enqueue_expansion(series.id, job.expand_until)
            logger.warning(
                f"Series {series.id}: occurrence cap of {limit} reached at {last_day}, "
                f"remainder until {job.expand_until} queued as job {continuation_id}"
            )
        elif series.expanded_until is None or job.expand_until > series.expanded_until:
            series.expanded_until = job.expand_until

        return {
            "created": counts["created"],
            "conflict_skipped": counts["conflict_skipped"],
            "skipped_existing": counts["skipped_existing"],
            "truncated": truncated,
            "expanded_until": series.expanded_until.isoformat(),
        }

    def process_job(self, job: ExpansionJob) -> ExpansionJob:
        """
        Run one claimed job and record its outcome.

        Returns:
            The job, completed, pending for retry, or failed
        """
        job_id = job.id
        try:
            series = self.db.query(Series).filter(Series.id == job.series_id).first()

            if series is None:
                self._complete(job, {"created": 0, "reason": "series_missing"})
            elif series.status != SeriesStatus.ACTIVE.value:
                self._complete(job, {"created": 0, "reason": f"series_{series.status}"})
                logger.info(f"Job {job_id}: series {series.id} is {series.status}, skipped")
            else:
                drift = self.template_validator.check_schema_drift(
                    series.record_type, series.template, series.time_field
                )
                if drift:
                    series.status = SeriesStatus.NEEDS_ATTENTION.value
                    self._complete(job, {
                        "created": 0,
                        "reason": "schema_drift",
                        "issues": [issue.to_dict() for issue in drift],
                    })
                    logger.warning(
                        f"Series {series.id} needs attention: "
                        + "; ".join(f"{i.field}: {i.issue}" for i in drift)
                    )
                else:
                    result = self._expand(series, job)
                    self._complete(job, result)
                    logger.info(
                        f"Job {job_id}: series {series.id} expanded until "
                        f"{result['expanded_until']} ({result['created']} created, "
                        f"{result['conflict_skipped']} conflict-skipped)"
                    )

            self.db.commit()
        except Exception as e:
            self.db.rollback()
            job = self.db.query(ExpansionJob).filter(ExpansionJob.id == job_id).one()
            job.error_message = str(e)
            if job.attempts >= job.max_attempts:
                job.status = ExpansionJobStatus.FAILED.value
                job.completed_at = datetime.utcnow()
                logger.error(f"Expansion job {job_id} failed after {job.attempts} attempt(s): {e}")
            else:
                job.status = ExpansionJobStatus.PENDING.value
                logger.warning(f"Expansion job {job_id} attempt {job.attempts} failed, will retry: {e}")
            self.db.commit()

        return job

    def run_pending(self, limit: Optional[int] = None) -> int:
        """
        Process pending jobs until the queue is empty or ``limit`` is reached.

        A job returned to pending after a failure is picked up again in the
        same run, so the loop is bounded by each job's max_attempts.

        Returns:
            Number of jobs processed
        """
        processed = 0
        while limit is None or processed < limit:
            job = self.claim_next()
            if job is None:
                break
            self.process_job(job)
            processed += 1
        return processed

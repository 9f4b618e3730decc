"""
Job sink: hand-off point for asynchronous series expansion.
"""

from abc import ABC, abstractmethod
from datetime import date

from sqlalchemy.orm import Session

from cadence.src.config.settings import get_settings
from cadence.src.models import ExpansionJob, ExpansionJobStatus
from cadence.src.utils.logging_config import get_logger


logger = get_logger("services")

EXPANSION_QUEUE = "recurring"
EXPANSION_JOB_KIND = "expand_recurring_series"


class JobSink(ABC):
    """Accepts ``(series_id, until)`` expansion requests."""

    @abstractmethod
    def enqueue_expansion(self, series_id: int, until: date) -> int:
        """Queue expansion of a series through ``until``; returns a job id."""


class DatabaseJobSink(JobSink):
    """
    Writes expansion jobs to the ``expansion_jobs`` table.

    The job row joins the caller's transaction: it becomes visible to
    workers only when the series change that requested it commits. A
    pending job for the same series is reused and its horizon extended
    instead of queueing a duplicate.
    """

    def __init__(self, db: Session):
        self.db = db

    def enqueue_expansion(self, series_id: int, until: date) -> int:
        pending = (
            self.db.query(ExpansionJob)
            .filter(
                ExpansionJob.series_id == series_id,
                ExpansionJob.queue == EXPANSION_QUEUE,
                ExpansionJob.status == ExpansionJobStatus.PENDING.value,
            )
            .order_by(ExpansionJob.created_at.asc())
            .first()
        )
        if pending is not None:
            if until > pending.expand_until:
                pending.expand_until = until
                self.db.flush()
            logger.info(
                f"Coalesced expansion of series {series_id} into job {pending.id} "
                f"(until {pending.expand_until})"
            )
            return pending.id

        job = ExpansionJob(
            queue=EXPANSION_QUEUE,
            kind=EXPANSION_JOB_KIND,
            series_id=series_id,
            expand_until=until,
            status=ExpansionJobStatus.PENDING.value,
            max_attempts=get_settings().job_max_attempts,
        )
        self.db.add(job)
        self.db.flush()

        logger.info(f"Queued expansion job {job.id} for series {series_id} until {until}")
        return job.id

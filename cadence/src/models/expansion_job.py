"""
ExpansionJob model: persistent queue of series expansion work.

Jobs are written in the same transaction as the series change that needs
them, so a committed series edit always has its expansion queued. Workers
claim pending jobs oldest first (FOR UPDATE SKIP LOCKED on PostgreSQL).
"""

import enum
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, Integer, String, DateTime, Date, Text, ForeignKey, Index

from cadence.src.models import Base
from cadence.src.models.types import JSONBType


class ExpansionJobStatus(enum.Enum):
    """
    Expansion job lifecycle:
    - PENDING: Waiting to be claimed
    - RUNNING: Claimed by a worker
    - COMPLETED: Finished (including no-op runs)
    - FAILED: Gave up after max_attempts
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ExpansionJob(Base):
    """
    A request to materialize a series up to a date.

    Attributes:
        id: Primary key
        queue: Queue name ("recurring")
        kind: Job kind ("expand_recurring_series")
        series_id: Series to expand (CASCADE on series delete)
        expand_until: Last local date to materialize
        status: pending, running, completed, failed
        attempts: Attempts made so far
        max_attempts: Attempts allowed before failing
        result_json: Counts reported by the worker
        error_message: Last error, if any
        created_at: Enqueue timestamp
        started_at: Last claim timestamp
        completed_at: Completion timestamp
    """

    __tablename__ = "expansion_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue = Column(String(50), nullable=False, default="recurring")
    kind = Column(String(50), nullable=False, default="expand_recurring_series")

    series_id = Column(
        Integer,
        ForeignKey("recurring_series.id", name="fk_expansion_jobs_series_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    expand_until = Column(Date, nullable=False)

    status = Column(String(20), nullable=False, default=ExpansionJobStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    result_json = Column(JSONBType, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_expansion_jobs_claim", "queue", "status", "created_at"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ExpansionJobStatus.PENDING.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "kind": self.kind,
            "series_id": self.series_id,
            "expand_until": self.expand_until.isoformat() if self.expand_until else None,
            "status": self.status,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "result": self.result_json,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<ExpansionJob(id={self.id}, series_id={self.series_id}, "
            f"until={self.expand_until}, status={self.status})>"
        )

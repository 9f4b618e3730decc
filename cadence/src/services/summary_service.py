"""
Group summary service (read-only).

Aggregates every version of a series group into one view: version count,
first date, the version currently in force, instance and exception counts,
a derived status and the first instances by date.
"""

from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from cadence.src.config.settings import get_settings
from cadence.src.models import Series, SeriesGroup, SeriesInstance, SeriesStatus
from cadence.src.schemas.recurring import (
    CurrentVersionSummary,
    GroupStatus,
    GroupSummaryResponse,
    InstanceResponse,
)
from cadence.src.services.exceptions import NotFoundError
from cadence.src.services.rule_validation import describe_rule
from cadence.src.utils.logging_config import get_logger


logger = get_logger("services")


def derive_group_status(versions: List[Series]) -> GroupStatus:
    """
    Status of a group from its versions.

    active when a current version is active, needs_attention when any
    version needs attention, ended otherwise.
    """
    if any(s.is_current and s.status == SeriesStatus.ACTIVE.value for s in versions):
        return GroupStatus.ACTIVE
    if any(s.status == SeriesStatus.NEEDS_ATTENTION.value for s in versions):
        return GroupStatus.NEEDS_ATTENTION
    return GroupStatus.ENDED


class SummaryService:
    """
    Service for series group summaries.

    Usage:
        >>> service = SummaryService(db_session)
        >>> summary = service.get_group_summary(group_id)
        >>> summary.status, summary.active_instance_count
        (<GroupStatus.ACTIVE: 'active'>, 12)
    """

    def __init__(self, db: Session):
        self.db = db

    def _summarize(self, group: SeriesGroup) -> GroupSummaryResponse:
        versions = list(group.series)
        series_ids = [s.id for s in versions]
        limit = get_settings().summary_instance_limit

        active_count = 0
        exception_count = 0
        instances = []
        if series_ids:
            base = self.db.query(SeriesInstance).filter(SeriesInstance.series_id.in_(series_ids))
            active_count = (
                base.filter(SeriesInstance.record_id.isnot(None))
                .with_entities(func.count(SeriesInstance.id))
                .scalar()
            )
            exception_count = (
                base.filter(SeriesInstance.is_exception.is_(True))
                .with_entities(func.count(SeriesInstance.id))
                .scalar()
            )
            instances = (
                base.order_by(SeriesInstance.occurrence_date, SeriesInstance.id)
                .limit(limit)
                .all()
            )

        current = group.current_series
        current_summary = None
        if current is not None:
            current_summary = CurrentVersionSummary(
                series_id=current.id,
                series_guid=current.guid,
                version_number=current.version_number,
                rrule=current.rrule,
                rule_description=describe_rule(current.rrule),
                anchor_start=current.anchor_start,
                duration=current.duration,
                timezone=current.timezone,
                status=current.status,
                template=dict(current.template or {}),
            )

        return GroupSummaryResponse(
            group_id=group.id,
            group_guid=group.guid,
            display_name=group.display_name,
            description=group.description,
            color=group.color,
            created_by=group.created_by,
            created_at=group.created_at,
            record_type=versions[0].record_type if versions else None,
            version_count=len(versions),
            started_on=min((s.effective_from for s in versions), default=None),
            current_version=current_summary,
            active_instance_count=active_count or 0,
            exception_count=exception_count or 0,
            status=derive_group_status(versions),
            instances=[InstanceResponse.model_validate(i) for i in instances],
        )

    def get_group_summary(self, group_id: int) -> GroupSummaryResponse:
        """
        Summarize one group.

        Raises:
            NotFoundError: If group not found
        """
        group = (
            self.db.query(SeriesGroup)
            .options(selectinload(SeriesGroup.series))
            .filter(SeriesGroup.id == group_id)
            .first()
        )
        if group is None:
            raise NotFoundError("Series group", group_id)
        return self._summarize(group)

    def list_group_summaries(self) -> List[GroupSummaryResponse]:
        """Summarize every group, newest first."""
        groups = (
            self.db.query(SeriesGroup)
            .options(selectinload(SeriesGroup.series))
            .order_by(SeriesGroup.created_at.desc(), SeriesGroup.id.desc())
            .all()
        )
        logger.debug(f"Summarizing {len(groups)} series group(s)")
        return [self._summarize(group) for group in groups]

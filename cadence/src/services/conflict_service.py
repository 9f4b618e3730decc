"""
Conflict detection service.

Provides:
- Overlap preview of candidate time ranges against existing records that
  share a scope (e.g. the same resource)
- Preview of every occurrence a recurrence rule would produce
- An opt-in abort policy via ensure_no_conflicts

Design:
- Conflicts are computed at query time and never persisted
- Ranges are half-open: [09:00, 10:00) and [10:00, 11:00) do not conflict
- Advisory only; a concurrent writer may still land an overlapping record
  before the caller persists anything
"""

from datetime import datetime, timedelta
from typing import Any, List, Optional, Sequence

from sqlalchemy.orm import Session

from cadence.src.config.settings import get_settings
from cadence.src.schemas.conflict import ConflictPreviewItem, TimeRangeSchema
from cadence.src.services.entity_store import EntityStore, SqlEntityStore
from cadence.src.services.exceptions import ConflictDetectedError
from cadence.src.services.recurrence_expander import expand_occurrences
from cadence.src.utils.logging_config import get_logger
from cadence.src.utils.time_ranges import TimeRange


logger = get_logger("services")


class ConflictService:
    """
    Service for previewing booking conflicts.

    Usage:
        >>> service = ConflictService(db_session)
        >>> items = service.preview_conflicts(
        ...     "reservations", "resource_id", 5, "time_slot", [TimeRange(start, end)]
        ... )
        >>> [item.conflict for item in items]
        [False]
    """

    def __init__(self, db: Session, entity_store: Optional[EntityStore] = None):
        """
        Initialize the conflict service.

        Args:
            db: SQLAlchemy database session
            entity_store: Store to query (defaults to SqlEntityStore on db)
        """
        self.db = db
        self.entity_store = entity_store or SqlEntityStore(db)

    def preview_conflicts(
        self,
        record_type: str,
        scope_field: Optional[str],
        scope_value: Any,
        time_field: Optional[str],
        ranges: Sequence[TimeRange],
    ) -> List[ConflictPreviewItem]:
        """
        Check each candidate range for an overlapping record in scope.

        Args:
            record_type: Record type to search
            scope_field: Field identifying the shared resource (None = any record)
            scope_value: Value of scope_field that candidates would use
            time_field: Time-range field on the record type
            ranges: Candidate ranges, in caller order

        Returns:
            One ConflictPreviewItem per candidate, index matching input order
        """
        items = []
        for index, candidate in enumerate(ranges):
            clash = self.entity_store.find_overlapping(
                record_type, scope_field, scope_value, time_field, candidate
            )
            items.append(ConflictPreviewItem(
                index=index,
                range=TimeRangeSchema(start=candidate.start, end=candidate.end),
                conflict=clash is not None,
                conflicting_record_id=clash.record_id if clash else None,
                conflicting_display=clash.label if clash else None,
            ))

        conflict_count = sum(1 for item in items if item.conflict)
        logger.info(
            f"Previewed {len(items)} range(s) for {record_type}: "
            f"{conflict_count} conflict(s)"
        )
        return items

    def preview_series_conflicts(
        self,
        record_type: str,
        scope_field: Optional[str],
        scope_value: Any,
        time_field: Optional[str],
        rule: str,
        anchor_start: datetime,
        duration: timedelta,
        tz_name: Optional[str] = None,
        window_end: Optional[datetime] = None,
    ) -> List[ConflictPreviewItem]:
        """
        Expand a recurrence and preview conflicts for every occurrence.

        window_end defaults to now plus the expansion horizon, the same reach
        an expansion job queued at creation would have.
        """
        if window_end is None:
            window_end = datetime.utcnow() + timedelta(
                days=get_settings().expansion_horizon_days
            )

        occurrences = expand_occurrences(rule, anchor_start, duration, tz_name, window_end)
        return self.preview_conflicts(
            record_type, scope_field, scope_value, time_field, occurrences
        )

    def ensure_no_conflicts(
        self,
        record_type: str,
        scope_field: Optional[str],
        scope_value: Any,
        time_field: Optional[str],
        ranges: Sequence[TimeRange],
    ) -> List[ConflictPreviewItem]:
        """
        Preview conflicts and abort if any candidate overlaps.

        Raises:
            ConflictDetectedError: Carrying the conflicting preview items
        """
        items = self.preview_conflicts(record_type, scope_field, scope_value, time_field, ranges)
        conflicts = [item for item in items if item.conflict]
        if conflicts:
            raise ConflictDetectedError(conflicts)
        return items

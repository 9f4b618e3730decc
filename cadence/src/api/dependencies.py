"""
Shared FastAPI dependencies for the cadence API.

One entity store is built per request and shared by every service the
request touches. Services that may delete records are built on top of the
InstanceService, whose constructor registers orphan cleanup on that store.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from cadence.src.db.database import get_db
from cadence.src.services.conflict_service import ConflictService
from cadence.src.services.entity_store import EntityStore, SqlEntityStore
from cadence.src.services.instance_service import InstanceService
from cadence.src.services.record_service import RecordService
from cadence.src.services.series_service import SeriesService
from cadence.src.services.summary_service import SummaryService


def get_entity_store(db: Session = Depends(get_db)) -> EntityStore:
    """Create the request's SqlEntityStore."""
    return SqlEntityStore(db)


def get_instance_service(
    db: Session = Depends(get_db),
    entity_store: EntityStore = Depends(get_entity_store),
) -> InstanceService:
    """Create InstanceService and register its orphan hook on the store."""
    return InstanceService(db=db, entity_store=entity_store)


def get_series_service(
    db: Session = Depends(get_db),
    instance_service: InstanceService = Depends(get_instance_service),
) -> SeriesService:
    """Create SeriesService instance with database session."""
    return SeriesService(db=db, entity_store=instance_service.entity_store)


def get_record_service(
    db: Session = Depends(get_db),
    instance_service: InstanceService = Depends(get_instance_service),
) -> RecordService:
    """Create RecordService instance with database session."""
    return RecordService(db=db, entity_store=instance_service.entity_store)


def get_conflict_service(
    db: Session = Depends(get_db),
    entity_store: EntityStore = Depends(get_entity_store),
) -> ConflictService:
    """Create ConflictService instance with database session."""
    return ConflictService(db=db, entity_store=entity_store)


def get_summary_service(db: Session = Depends(get_db)) -> SummaryService:
    """Create SummaryService instance with database session."""
    return SummaryService(db=db)

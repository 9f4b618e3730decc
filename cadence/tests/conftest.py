"""
Pytest configuration and fixtures for cadence tests.

Provides shared fixtures for:
- Test database sessions
- Record type factory (a "reservations" type with field metadata)
- Services wired to one shared entity store
- Series factory with optional expansion
- FastAPI test client
"""

import os
import pytest
from datetime import date, datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['CADENCE_DB_URL'] = 'sqlite:///:memory:'
os.environ.setdefault('CADENCE_LOG_LEVEL', 'WARNING')

from cadence.src.config.settings import get_settings
from cadence.src.models import Base, RecordField, RecordType
from cadence.src.services.entity_store import SqlEntityStore
from cadence.src.services.expansion_worker import ExpansionWorker
from cadence.src.services.instance_service import InstanceService
from cadence.src.services.series_service import SeriesService


# Monday 2026-03-02 09:00 UTC
MONDAY_9AM = datetime(2026, 3, 2, 9, 0)
ONE_HOUR = timedelta(hours=1)
MWF_RULE = "FREQ=WEEKLY;BYDAY=MO,WE,FR;COUNT=12"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_db_session(test_db_engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def reset_settings():
    """Reload settings from the environment for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Sample Data Factories
# ============================================================================

RESERVATION_FIELDS = (
    # name, editable, nullable, has_default, data_type
    ("id", False, False, True, "integer"),
    ("resource_id", True, False, False, "integer"),
    ("purpose", True, True, False, "text"),
    ("display_name", True, True, False, "text"),
    ("notes", True, True, False, "text"),
    ("time_slot", True, False, False, "tstzrange"),
    ("status", False, False, True, "text"),
    ("created_at", True, False, True, "timestamp"),
)


@pytest.fixture
def sample_record_type(test_db_session):
    """Factory for creating record types with field metadata."""

    def _create(name="reservations", exclusive_scope_field=None, fields=RESERVATION_FIELDS):
        record_type = RecordType(
            name=name,
            display_field="display_name",
            exclusive_scope_field=exclusive_scope_field,
        )
        for field_name, editable, nullable, has_default, data_type in fields:
            record_type.fields.append(RecordField(
                name=field_name,
                editable=editable,
                nullable=nullable,
                has_default=has_default,
                data_type=data_type,
            ))
        test_db_session.add(record_type)
        test_db_session.commit()
        return record_type

    return _create


@pytest.fixture
def reservations(sample_record_type):
    """The default "reservations" record type, without exclusive scope."""
    return sample_record_type()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def entity_store(test_db_session):
    """SqlEntityStore on the test session."""
    return SqlEntityStore(test_db_session)


@pytest.fixture
def instance_service(test_db_session, entity_store):
    """InstanceService with its orphan hook registered on entity_store."""
    return InstanceService(test_db_session, entity_store=entity_store)


@pytest.fixture
def series_service(test_db_session, entity_store, instance_service):
    """SeriesService sharing entity_store with instance_service."""
    return SeriesService(test_db_session, entity_store=entity_store)


@pytest.fixture
def expansion_worker(test_db_session, entity_store):
    """ExpansionWorker sharing entity_store with the services."""
    return ExpansionWorker(test_db_session, entity_store=entity_store)


@pytest.fixture
def sample_series(test_db_session, sample_record_type, series_service, expansion_worker):
    """
    Factory creating a series and optionally materializing it.

    Defaults to Mon/Wed/Fri 09:00 UTC for one hour, 12 occurrences,
    starting Monday 2026-03-02. Creates the "reservations" record type
    unless the test already registered one.
    """

    def _create(
        group_name="Standup",
        template=None,
        rrule=MWF_RULE,
        anchor_start=MONDAY_9AM,
        duration=ONE_HOUR,
        timezone=None,
        expand_until=date(2026, 3, 31),
        **kwargs
    ):
        if not test_db_session.query(RecordType).filter(RecordType.name == "reservations").first():
            sample_record_type()

        result = series_service.create_series(
            group_name=group_name,
            record_type="reservations",
            template=template if template is not None else {"resource_id": 5, "purpose": "Standup"},
            rrule=rrule,
            anchor_start=anchor_start,
            duration=duration,
            timezone=timezone,
            expand_now=False,
            **kwargs
        )
        if expand_until is not None:
            series_service.expand_series_instances(result.series_id, expand_until)
            expansion_worker.run_pending()
        return series_service.get_series(result.series_id)

    return _create


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
def test_client(test_db_session):
    """Create a test client for FastAPI application."""
    from fastapi.testclient import TestClient
    from cadence.src.main import app

    # Override dependencies
    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    from cadence.src.db.database import get_db

    app.dependency_overrides[get_db] = get_test_db

    with TestClient(app) as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()

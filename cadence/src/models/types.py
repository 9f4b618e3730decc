"""
Custom SQLAlchemy column types.

Templates, record field maps and reschedule histories are JSON documents.
PostgreSQL stores them as JSONB; SQLite (local runs and tests) as JSON.
"""

from sqlalchemy import TypeDecorator, JSON
from sqlalchemy.dialects.postgresql import JSONB


class JSONBType(TypeDecorator):
    """JSONB on PostgreSQL, plain JSON everywhere else."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

"""
Service layer for the cadence scheduling engine.

Modules:
- rule_validation: recurrence rule checks and rewriting
- template_validation: template allowlist and schema-drift checks
- recurrence_expander: rule expansion to occurrence ranges
- conflict_service: advisory overlap detection
- series_service: series and group lifecycle
- instance_service: occurrence exceptions and membership
- summary_service: read-only group summaries
- entity_store, field_metadata, job_sink: collaborator contracts
- expansion_worker: materialization of queued expansions

Service classes are imported from their modules directly; this package only
re-exports the exception hierarchy so models can import it without cycles.
"""

from cadence.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ValidationError,
    InvalidRuleError,
    UnsupportedFrequencyError,
    DisallowedFieldError,
    MissingFieldError,
    ConflictError,
    RecordConflictError,
    ConflictDetectedError,
    SeriesDeletionError,
)

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ValidationError",
    "InvalidRuleError",
    "UnsupportedFrequencyError",
    "DisallowedFieldError",
    "MissingFieldError",
    "ConflictError",
    "RecordConflictError",
    "ConflictDetectedError",
    "SeriesDeletionError",
]

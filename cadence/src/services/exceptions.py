"""
Custom exceptions for the service layer.

Provides specific exception types for scheduling errors that the API layer
translates to HTTP responses. Schema drift is deliberately absent: it is
reported as data by TemplateValidator.check_schema_drift.
"""

from typing import Any, Iterable, List, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class InvalidRuleError(ValidationError):
    """Raised when a recurrence rule is malformed or has an unknown frequency."""

    def __init__(self, message: str):
        super().__init__(message, field="rrule")


class UnsupportedFrequencyError(ValidationError):
    """Raised for sub-hourly frequencies (SECONDLY, MINUTELY)."""

    def __init__(self, frequency: str):
        self.frequency = frequency
        super().__init__(
            f"Frequency {frequency} is not supported. "
            "Minimum frequency is HOURLY",
            field="rrule"
        )


class DisallowedFieldError(ValidationError):
    """Raised when a template carries a field that is not user-editable."""

    def __init__(self, field: str, record_type: str, allowed: Iterable[str]):
        self.allowed = sorted(allowed)
        self.record_type = record_type
        super().__init__(
            f'Field "{field}" is not allowed in template for {record_type}. '
            f"Allowed fields: {', '.join(self.allowed)}",
            field=field
        )


class MissingFieldError(ValidationError):
    """Raised when a required creation parameter is absent."""

    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}", field=field)


class ConflictError(ServiceError):
    """Raised when an operation conflicts with existing state."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RecordConflictError(ConflictError):
    """
    Raised by an entity store when a record's time range collides with
    another record in an exclusive scope.
    """

    def __init__(self, record_type: str, conflicting_record_id: int):
        self.record_type = record_type
        self.conflicting_record_id = conflicting_record_id
        super().__init__(
            f"{record_type} time range overlaps record #{conflicting_record_id}"
        )


class ConflictDetectedError(ConflictError):
    """Raised when a caller opts to abort on previewed conflicts."""

    def __init__(self, conflicts: List[Any]):
        self.conflicts = conflicts
        super().__init__(
            f"{len(conflicts)} occurrence(s) overlap existing records"
        )


class SeriesDeletionError(ServiceError):
    """Raised when a series row is deleted outside the series deletion path."""

    def __init__(self, series_id: Any):
        self.series_id = series_id
        self.message = (
            f"Cannot delete series {series_id} directly. "
            "Use delete_series or delete_group to remove series and their instances"
        )
        super().__init__(self.message)

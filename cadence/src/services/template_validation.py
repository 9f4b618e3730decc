"""
Template validation.

A series template is a field/value map stamped onto every generated record.
Only fields the record type marks as editable may appear in it; identity
and audit columns are never allowed. The time-range field is supplied per
occurrence by expansion, so it is ignored wherever it shows up.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from cadence.src.config.settings import get_settings
from cadence.src.services.exceptions import (
    DisallowedFieldError,
    NotFoundError,
    ValidationError,
)
from cadence.src.services.field_metadata import FieldMetadataSource


BLOCKED_FIELDS = frozenset({"id", "created_at", "created_by", "updated_at", "updated_by"})

MISSING_REQUIRED_ISSUE = "Required field missing from template"
FIELD_REMOVED_ISSUE = "Field no longer exists in entity schema"


@dataclass(frozen=True)
class DriftIssue:
    """One mismatch between a stored template and its record type."""

    field: str
    issue: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "issue": self.issue}


class TemplateValidator:
    """
    Validates templates against a record type's field metadata.

    Usage:
        >>> validator = TemplateValidator(SqlFieldMetadataSource(db))
        >>> validator.validate("reservations", {"resource_id": 5})
        >>> validator.check_schema_drift("reservations", series.template)
        []
    """

    def __init__(self, field_metadata: FieldMetadataSource):
        self.field_metadata = field_metadata

    def allowed_fields(self, record_type: str) -> Set[str]:
        """
        Editable fields of a record type, minus the blocked audit fields.

        Raises:
            NotFoundError: If the record type does not exist
        """
        fields = self.field_metadata.get_fields(record_type)
        if fields is None:
            raise NotFoundError("Record type", record_type)

        return {
            name for name, info in fields.items()
            if info.editable and name not in BLOCKED_FIELDS
        }

    def validate(
        self,
        record_type: str,
        template: Optional[Dict[str, Any]],
        time_field: Optional[str] = None,
    ) -> None:
        """
        Validate every key of a template.

        Args:
            record_type: Target record type name
            template: Field/value map (None is treated as empty)
            time_field: Time-range field to skip (defaults to the configured
                default time field)

        Raises:
            NotFoundError: If the record type does not exist
            ValidationError: If the template is not a mapping
            DisallowedFieldError: On the first key outside the allowed set
        """
        if template is None:
            template = {}
        if not isinstance(template, dict):
            raise ValidationError("Template must be an object", field="template")

        time_field = time_field or get_settings().default_time_field
        allowed = self.allowed_fields(record_type)

        for key in template:
            if key == time_field:
                continue
            if key not in allowed:
                raise DisallowedFieldError(key, record_type, allowed)

    def check_schema_drift(
        self,
        record_type: str,
        template: Optional[Dict[str, Any]],
        time_field: Optional[str] = None,
    ) -> List[DriftIssue]:
        """
        Compare a stored template with the record type's current fields.

        Reports required fields absent from the template and template fields
        the record type no longer has. A record type that no longer exists
        reports every template field as removed.

        Returns:
            List of DriftIssue, empty when the template is still consistent
        """
        template = template or {}
        time_field = time_field or get_settings().default_time_field
        fields = self.field_metadata.get_fields(record_type) or {}

        issues = []
        for name, info in fields.items():
            if name in BLOCKED_FIELDS or name == time_field:
                continue
            if info.required and name not in template:
                issues.append(DriftIssue(name, MISSING_REQUIRED_ISSUE))

        for key in template:
            if key == time_field:
                continue
            if key not in fields:
                issues.append(DriftIssue(key, FIELD_REMOVED_ISSUE))

        return issues

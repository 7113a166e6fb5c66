"""
Row validation.

Field validators for required values and type coercion, composed by
RecordValidator into the per-row status policy.
"""

from .base_validator import BaseValidator, RuleViolation
from .record_validator import RecordValidator, change_note
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator

__all__ = [
    "BaseValidator",
    "RuleViolation",
    "RecordValidator",
    "RequiredFieldValidator",
    "TypeValidator",
    "change_note",
]

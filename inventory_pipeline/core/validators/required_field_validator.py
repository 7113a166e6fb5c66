"""
RequiredFieldValidator - ensures a field is present and not empty.
"""

from typing import Any

from inventory_pipeline.core.fields import clean_cell
from .base_validator import BaseValidator, RuleViolation


class RequiredFieldValidator(BaseValidator):
    """
    Validates that a required field is present and not empty.

    Fails if:
    - Field is missing from the record
    - Field value is None
    - Field value is blank after trimming
    """

    def validate(self, value: Any, record: dict[str, Any]) -> str:
        if self.field_name not in record or value is None:
            raise RuleViolation(
                rule_name="required_field",
                field_name=self.field_name,
                message=f"{self.field_name} is required",
                issue_type="missing_field",
                fallback="",
            )

        cleaned = clean_cell(value)
        if cleaned == "":
            raise RuleViolation(
                rule_name="required_field",
                field_name=self.field_name,
                message=f"{self.field_name} is required",
                issue_type="missing_field",
                fallback="",
            )
        return cleaned

    @property
    def rule_type(self) -> str:
        return "required_field"

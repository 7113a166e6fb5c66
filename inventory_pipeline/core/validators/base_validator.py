"""
Base validator interface for field-level checks.

Field validators return the cleaned value or raise RuleViolation. They are
composed by RecordValidator, which turns violations into ValidationIssues;
a violation never escapes a row.
"""

from abc import ABC, abstractmethod
from typing import Any


class RuleViolation(Exception):
    """Raised when a field fails a check."""

    def __init__(
        self,
        rule_name: str,
        field_name: str,
        message: str,
        issue_type: str = "invalid_format",
        fallback: Any = None,
    ):
        self.rule_name = rule_name
        self.field_name = field_name
        self.message = message
        self.issue_type = issue_type
        self.fallback = fallback
        super().__init__(f"[{rule_name}] {field_name}: {message}")


class BaseValidator(ABC):
    """
    Abstract base class for field validators.

    Each validator implements one check type (required_field, type_check).
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        """
        Initialize validator.

        Args:
            field_name: Name of the field to validate
            parameters: Check-specific parameters
        """
        self.field_name = field_name
        self.parameters = parameters or {}

    @abstractmethod
    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        """
        Check a value and return it cleaned.

        Args:
            value: The field value to validate
            record: The entire record (for context-dependent checks)

        Returns:
            The cleaned value

        Raises:
            RuleViolation: If the check fails
        """

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Return the rule type identifier."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field={self.field_name}, params={self.parameters})"

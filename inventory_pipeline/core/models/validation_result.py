"""
ValidationResult model representing the outcome of validating one row (ephemeral).
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .validation_issue import ValidationIssue

ValidationOutcome = Literal["valid", "invalid", "corrected"]


class ValidationResult(BaseModel):
    """
    Outcome of validating a row (ephemeral, used during processing).

    Note: ValidationResult is not persisted directly; the scheduler copies
    its cleaned fields, status and issues onto the staging row.

    Attributes:
        row_number: Source row number
        is_valid: False when any blocking error was found
        status: "valid", "invalid" or "corrected"
        errors: Blocking problems
        warnings: Non-blocking problems and auto-corrections
        issues: Structured form of errors and warnings
        cleaned: Field map after coercion and correction
    """

    row_number: int
    is_valid: bool
    status: ValidationOutcome
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    issues: list[ValidationIssue] = Field(default_factory=list)
    cleaned: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "row_number": 2,
                "is_valid": True,
                "status": "corrected",
                "errors": [],
                "warnings": ['VCPN auto-generated: "ABC10406"'],
                "cleaned": {"vendor_code": "ABC", "part_number": "10406", "vcpn": "ABC10406"},
            }
        }
    )

    @model_validator(mode="after")
    def check_status_consistency(self) -> "ValidationResult":
        """Status must agree with the error list."""
        if self.errors and (self.is_valid or self.status != "invalid"):
            raise ValueError("a result with errors must be invalid")
        if not self.errors and (not self.is_valid or self.status == "invalid"):
            raise ValueError("a result without errors cannot be invalid")
        return self

    @property
    def needs_review(self) -> bool:
        return self.status != "valid"

    @property
    def notes(self) -> list[str]:
        return [*self.errors, *self.warnings]

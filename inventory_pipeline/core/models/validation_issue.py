"""
ValidationIssue model: one structured problem found on a staged row.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

IssueType = Literal["missing_field", "invalid_format", "calculation_error", "duplicate", "other"]

ISSUE_TYPES: tuple[str, ...] = ("missing_field", "invalid_format", "calculation_error", "duplicate", "other")


class ValidationIssue(BaseModel):
    """
    A single validation finding attached to a staging row.

    Issues are stored as a list on the row so the review screen can filter by
    issue type without parsing the free-text notes.

    Attributes:
        issue_type: Category of the problem
        field_name: Canonical field the issue concerns
        description: Human-readable description
        suggested_fix: What an operator (or a mass correction) should do
        severity: "error" makes the row invalid, "warning" makes it corrected
        row_number: Source row, for messages surfaced outside the row
        old_value: Value as received
        new_value: Value after auto-correction, if one was applied
    """

    issue_type: IssueType
    field_name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    suggested_fix: str | None = None
    severity: Literal["error", "warning"] = "warning"
    row_number: int | None = None
    old_value: str | None = None
    new_value: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "issue_type": "calculation_error",
                "field_name": "total_qty",
                "description": "TotalQty corrected from 0 to 8",
                "suggested_fix": "Recompute total from location quantities",
                "severity": "warning",
                "row_number": 14,
                "old_value": "0",
                "new_value": "8",
            }
        }
    )

    def to_message(self) -> str:
        """Render the issue with row and value context for operator-facing messages."""
        prefix = f"Row {self.row_number}: " if self.row_number is not None else ""
        return f"{prefix}[{self.issue_type}] {self.field_name}: {self.description}"

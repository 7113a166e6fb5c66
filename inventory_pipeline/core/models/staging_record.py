"""
StagingRecord model: one parsed source row held for review before reconciliation.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .inventory_fields import InventoryFields
from .upload_session import utc_now
from .validation_issue import ValidationIssue

StagingStatus = Literal["pending", "valid", "invalid", "corrected", "processed"]
ActionType = Literal["insert", "update", "delete", "unknown"]

ACCEPTED_STATUSES: tuple[str, ...] = ("valid", "corrected")


class StagingRecord(InventoryFields):
    """
    A source row with its normalized fields and validation outcome.

    Attributes:
        id: Staging row identifier (PK)
        upload_session_id: Owning session; never changes after insert
        row_number: 1-based data row number in the uploaded file
        original_data: Raw row as read, keyed by the file's headers
        validation_status: pending, valid, invalid, corrected or processed
        needs_review: True when an operator should look at the row
        issues: Structured validation findings
        validation_notes: Human-readable change log
        action_type: What reconciliation did (or will do) with the row
        existing_inventory_id: Authoritative record the row was merged into
        processed_at: When reconciliation last applied the row
    """

    id: UUID = Field(default_factory=uuid4)
    upload_session_id: UUID
    row_number: int = Field(..., ge=1)
    original_data: dict[str, Any] = Field(default_factory=dict)
    validation_status: StagingStatus = "pending"
    needs_review: bool = False
    issues: list[ValidationIssue] = Field(default_factory=list)
    validation_notes: list[str] = Field(default_factory=list)
    action_type: ActionType = "unknown"
    existing_inventory_id: UUID | None = None
    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "upload_session_id": "5b0f3c1e-8f1e-4e57-9a55-0c1f0b7f2a11",
                "row_number": 42,
                "original_data": {"VendorCode": "ABC", "PartNumber": '="10406"', "EastQty": "5"},
                "vendor_code": "ABC",
                "part_number": "10406",
                "vcpn": "ABC10406",
                "east_qty": 5,
                "total_qty": 5,
                "validation_status": "corrected",
                "needs_review": True,
                "validation_notes": ['part_number: ="10406" → 10406'],
                "action_type": "unknown",
            }
        }
    )

    @property
    def is_accepted(self) -> bool:
        return self.validation_status in ACCEPTED_STATUSES

    @property
    def issue_types(self) -> set[str]:
        return {issue.issue_type for issue in self.issues}


class StagingFilter(BaseModel):
    """Server-side filters for a staging query; None means "any"."""

    status: StagingStatus | None = None
    needs_review: bool | None = None
    action_type: ActionType | None = None
    search_term: str | None = None
    issue_type: str | None = None


class StagingPage(BaseModel):
    """One page of staging rows plus the totals a pager needs."""

    records: list[StagingRecord] = Field(default_factory=list)
    total_count: int = Field(0, ge=0)
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1)

    @computed_field
    @property
    def page_count(self) -> int:
        if self.total_count == 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size

"""
Core data models for the inventory import pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .inventory_fields import InventoryFields
from .inventory_record import UNKNOWN_ITEM_NAME, InventoryRecord
from .staging_record import (
    ACCEPTED_STATUSES,
    ActionType,
    StagingFilter,
    StagingPage,
    StagingRecord,
    StagingStatus,
)
from .upload_session import (
    RESUMABLE_STATUSES,
    TERMINAL_STATUSES,
    SessionStatus,
    UploadSession,
    utc_now,
)
from .validation_issue import ISSUE_TYPES, IssueType, ValidationIssue
from .validation_result import ValidationOutcome, ValidationResult

__all__ = [
    "InventoryFields",
    "InventoryRecord",
    "UNKNOWN_ITEM_NAME",
    "StagingRecord",
    "StagingFilter",
    "StagingPage",
    "StagingStatus",
    "ActionType",
    "ACCEPTED_STATUSES",
    "UploadSession",
    "SessionStatus",
    "TERMINAL_STATUSES",
    "RESUMABLE_STATUSES",
    "ValidationIssue",
    "IssueType",
    "ISSUE_TYPES",
    "ValidationResult",
    "ValidationOutcome",
    "utc_now",
]

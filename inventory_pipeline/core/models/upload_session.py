"""
UploadSession model: one tracked chunk of an uploaded inventory file.
"""

from datetime import datetime, timezone
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

SessionStatus = Literal["pending", "processing", "completed", "failed", "paused"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
RESUMABLE_STATUSES: frozenset[str] = frozenset({"paused", "failed"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UploadSession(BaseModel):
    """
    One chunk of an uploaded file, with its processing counters.

    All chunks carved from the same upload share a batch_id, which is what
    resume and run-level progress key on.

    Attributes:
        id: Session identifier (PK)
        batch_id: Groups the chunks of one upload
        filename: Stored file name (path the rows were read from)
        original_filename: Name as supplied by the uploader
        chunk_number: 1-based position of this chunk
        total_chunks: Number of chunks in the upload
        file_size: Size of the uploaded file in bytes
        status: pending, processing, completed, failed or paused
        total_records: Rows carved into this chunk
        rows_consumed: Rows of this chunk read so far (the resume cursor)
        processed_records: Rows validated and staged so far
        valid_records / invalid_records / corrected_records: Outcome counts
        failed_records: Row-level failures (staging or reconciliation)
        inserted_records / updated_records: Reconciliation outcomes
        error_message: Reason for a failed status
    """

    id: UUID = Field(default_factory=uuid4)
    batch_id: UUID = Field(default_factory=uuid4)
    filename: str = Field(..., min_length=1)
    original_filename: str = Field(..., min_length=1)
    chunk_number: int = Field(1, ge=1)
    total_chunks: int = Field(1, ge=1)
    file_size: int = Field(0, ge=0)
    status: SessionStatus = "pending"
    total_records: int = Field(0, ge=0)
    rows_consumed: int = Field(0, ge=0)
    processed_records: int = Field(0, ge=0)
    valid_records: int = Field(0, ge=0)
    invalid_records: int = Field(0, ge=0)
    corrected_records: int = Field(0, ge=0)
    failed_records: int = Field(0, ge=0)
    inserted_records: int = Field(0, ge=0)
    updated_records: int = Field(0, ge=0)
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "filename": "/uploads/vendor_inventory.csv",
                "original_filename": "vendor_inventory.csv",
                "chunk_number": 2,
                "total_chunks": 5,
                "file_size": 8421337,
                "status": "processing",
                "total_records": 5000,
                "processed_records": 1250,
                "valid_records": 1100,
                "invalid_records": 20,
                "corrected_records": 130,
            }
        }
    )

    @model_validator(mode="after")
    def check_counters(self) -> "UploadSession":
        """processed <= total and valid + invalid + corrected <= processed."""
        if self.rows_consumed > self.total_records:
            raise ValueError(
                f"rows_consumed ({self.rows_consumed}) exceeds total_records ({self.total_records})"
            )
        if self.processed_records > self.total_records:
            raise ValueError(
                f"processed_records ({self.processed_records}) exceeds total_records ({self.total_records})"
            )
        outcomes = self.valid_records + self.invalid_records + self.corrected_records
        if outcomes > self.processed_records:
            raise ValueError(
                f"valid + invalid + corrected ({outcomes}) exceeds processed_records ({self.processed_records})"
            )
        if self.chunk_number > self.total_chunks:
            raise ValueError(f"chunk_number {self.chunk_number} is beyond total_chunks {self.total_chunks}")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_resumable(self) -> bool:
        return self.status in RESUMABLE_STATUSES

    @property
    def remaining_records(self) -> int:
        return self.total_records - self.rows_consumed

"""
Exceptions raised by the inventory import pipeline.

Row-level validation problems are never raised; they are carried as
ValidationIssue entries on the staged row. Exceptions are reserved for
file-level rejection, chunk-level failures, reconciliation failures and
operator cancellation.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class UploadRejectedError(PipelineError):
    """Raised before any session is created when the upload is unusable."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Upload '{filename}' rejected: {reason}")


class ImportCancelledError(PipelineError):
    """Raised when an operator stop request is observed at a batch boundary."""

    def __init__(self, session_id: str, row_number: int | None = None):
        self.session_id = session_id
        self.row_number = row_number
        location = f" at row {row_number}" if row_number is not None else ""
        super().__init__(f"Cancelled by operator{location}")


class ChunkProcessingError(PipelineError):
    """Raised when a whole chunk cannot continue (storage outage, lost connection)."""

    def __init__(self, session_id: str, chunk_number: int, cause: BaseException):
        self.session_id = session_id
        self.chunk_number = chunk_number
        self.cause = cause
        super().__init__(f"Chunk {chunk_number} failed: {cause}")


class UploadIncompleteError(PipelineError):
    """Raised when an operation needs every chunk of an upload to be completed."""

    def __init__(self, batch_id: str, open_chunks: list[int]):
        self.batch_id = batch_id
        self.open_chunks = open_chunks
        chunks = ", ".join(str(n) for n in open_chunks)
        super().__init__(f"Upload {batch_id} is not complete; chunks not completed: {chunks}")


class ReconciliationError(PipelineError):
    """Raised when one staging row cannot be upserted into the inventory store."""

    def __init__(self, record_id: str, row_number: int | None, vcpn: str | None, cause: BaseException | str):
        self.record_id = record_id
        self.row_number = row_number
        self.vcpn = vcpn
        self.cause = cause
        super().__init__(
            f"Row {row_number} (vcpn={vcpn!r}) could not be reconciled: {cause}"
        )


class SessionNotFoundError(PipelineError, LookupError):
    """Raised when an upload session id does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Upload session not found: {session_id}")


class StagingRecordNotFoundError(PipelineError, LookupError):
    """Raised when a staging record id does not exist."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Staging record not found: {record_id}")


class CooldownActiveError(PipelineError):
    """Raised locally when a rate-limited call is attempted inside its cooldown window."""

    def __init__(self, remaining_seconds: float):
        self.remaining_seconds = remaining_seconds
        minutes, seconds = divmod(int(round(remaining_seconds)), 60)
        super().__init__(f"Rate limited. Next request allowed in {minutes}m {seconds:02d}s")

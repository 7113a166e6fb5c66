"""
Read-only progress views over upload sessions.

Snapshots are computed from the session counters alone, so they can be
taken at any time while a worker is writing.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from inventory_pipeline.core.exceptions import SessionNotFoundError
from inventory_pipeline.core.models import UploadSession, utc_now

DEFAULT_STALLED_AFTER_SECONDS = 3600.0


class ChunkProgress(BaseModel):
    """Per-chunk line of a run snapshot."""

    session_id: UUID
    chunk_number: int
    status: str
    total_records: int
    rows_consumed: int
    failed_records: int
    error_message: str | None = None
    stalled: bool = False


class ProgressSnapshot(BaseModel):
    """
    Progress of one session or of a whole upload.

    Attributes:
        status: Session status, or the combined status of all chunks
        percent_complete: Share of rows consumed, 0-100
        throughput: Rows consumed per second of elapsed time
        eta_seconds: Estimated time left; None when finished or unknown
        stalled: A chunk is processing but has not been updated for too long
    """

    batch_id: UUID
    session_id: UUID | None = None
    original_filename: str
    status: str
    total_records: int = 0
    rows_consumed: int = 0
    processed_records: int = 0
    valid_records: int = 0
    invalid_records: int = 0
    corrected_records: int = 0
    failed_records: int = 0
    inserted_records: int = 0
    updated_records: int = 0
    elapsed_seconds: float = 0.0
    throughput: float = 0.0
    percent_complete: float = 0.0
    eta_seconds: float | None = None
    stalled: bool = False
    chunks: list[ChunkProgress] = Field(default_factory=list)


def combined_status(statuses: list[str]) -> str:
    """
    Collapse chunk statuses into one.

    Examples:
        >>> combined_status(["completed", "processing", "pending"])
        'processing'
        >>> combined_status(["completed", "completed"])
        'completed'
    """
    for status in ("failed", "processing", "paused"):
        if status in statuses:
            return status
    if statuses and all(s == "completed" for s in statuses):
        return "completed"
    if "completed" in statuses:
        # some chunks done, the next one not started yet
        return "processing"
    return "pending"


class ProgressReporter:
    """
    Builds ProgressSnapshots from the session repository.

    Args:
        sessions: Upload session repository
        stalled_after_seconds: Age of the last update after which a
            processing session counts as stalled
        clock: Returns the current UTC time, injectable for tests
    """

    def __init__(
        self,
        sessions,
        stalled_after_seconds: float = DEFAULT_STALLED_AFTER_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.sessions = sessions
        self.stalled_after_seconds = stalled_after_seconds
        self.clock = clock

    def session_progress(self, session_id: UUID) -> ProgressSnapshot:
        """Snapshot of one chunk."""
        session = self.sessions.get(session_id)
        now = self.clock()
        snapshot = self._build(session.batch_id, [session], now)
        snapshot.session_id = session.id
        return snapshot

    def run_progress(self, batch_id: UUID) -> ProgressSnapshot:
        """
        Snapshot of every chunk of an upload.

        Raises:
            SessionNotFoundError: No chunks exist for batch_id
        """
        chunks = self.sessions.chunks_for_batch(batch_id)
        if not chunks:
            raise SessionNotFoundError(str(batch_id))
        return self._build(batch_id, chunks, self.clock())

    def is_stalled(self, session: UploadSession, now: datetime | None = None) -> bool:
        if session.status != "processing":
            return False
        now = now or self.clock()
        return (now - session.updated_at).total_seconds() > self.stalled_after_seconds

    def _build(self, batch_id: UUID, chunks: list[UploadSession], now: datetime) -> ProgressSnapshot:
        snapshot = ProgressSnapshot(
            batch_id=batch_id,
            original_filename=chunks[0].original_filename,
            status=combined_status([c.status for c in chunks]),
        )

        for chunk in chunks:
            snapshot.total_records += chunk.total_records
            snapshot.rows_consumed += chunk.rows_consumed
            snapshot.processed_records += chunk.processed_records
            snapshot.valid_records += chunk.valid_records
            snapshot.invalid_records += chunk.invalid_records
            snapshot.corrected_records += chunk.corrected_records
            snapshot.failed_records += chunk.failed_records
            snapshot.inserted_records += chunk.inserted_records
            snapshot.updated_records += chunk.updated_records

            stalled = self.is_stalled(chunk, now)
            snapshot.stalled = snapshot.stalled or stalled
            snapshot.chunks.append(
                ChunkProgress(
                    session_id=chunk.id,
                    chunk_number=chunk.chunk_number,
                    status=chunk.status,
                    total_records=chunk.total_records,
                    rows_consumed=chunk.rows_consumed,
                    failed_records=chunk.failed_records,
                    error_message=chunk.error_message,
                    stalled=stalled,
                )
            )

        started = [c.started_at for c in chunks if c.started_at is not None]
        if started:
            if snapshot.status == "completed":
                end = max(c.completed_at or c.updated_at for c in chunks)
            elif snapshot.status in ("paused", "failed"):
                end = max(c.updated_at for c in chunks)
            else:
                end = now
            snapshot.elapsed_seconds = round(max(0.0, (end - min(started)).total_seconds()), 3)

        if snapshot.elapsed_seconds > 0:
            snapshot.throughput = round(snapshot.rows_consumed / snapshot.elapsed_seconds, 2)

        if snapshot.total_records:
            snapshot.percent_complete = round(100.0 * snapshot.rows_consumed / snapshot.total_records, 1)

        remaining = snapshot.total_records - snapshot.rows_consumed
        if snapshot.status == "completed" or remaining <= 0:
            snapshot.eta_seconds = 0.0 if snapshot.status == "completed" else None
        elif snapshot.throughput > 0:
            snapshot.eta_seconds = round(remaining / snapshot.throughput, 1)

        return snapshot

"""
Chunk scheduling for inventory uploads.

An upload is carved into fixed-size chunks, one UploadSession each. Chunks
run one after another; inside a chunk rows are normalized, validated and
staged in small batches. Pause and stop requests are only observed between
batches, so a batch is always staged and counted as a whole.

Resume restarts at the first paused or failed chunk, at the row given by
that session's rows_consumed counter. The counter advances in the same
statement as the other counters, so a row is never counted twice.
"""

import itertools
import math
import threading
import time
from collections.abc import Iterator, Sequence
from typing import Any, Literal, Protocol
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from inventory_pipeline.core.exceptions import (
    ChunkProcessingError,
    ImportCancelledError,
    SessionNotFoundError,
    UploadRejectedError,
)
from inventory_pipeline.core.fields import FieldNormalizer
from inventory_pipeline.core.models import StagingRecord, UploadSession, ValidationIssue
from inventory_pipeline.core.validators import RecordValidator
from inventory_pipeline.observability import metrics
from inventory_pipeline.observability.logger import get_logger, log_operation

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 5000
DEFAULT_BATCH_SIZE = 50

OutcomeState = Literal["completed", "paused", "failed"]


class RowSource(Protocol):
    """What the scheduler needs from an opened upload."""

    path: str
    original_filename: str
    file_size: int
    headers: list[str]
    total_rows: int

    def iter_rows(self, start: int = 0) -> Iterator[list[str]]: ...


class SchedulerControl:
    """
    Pause/stop signals shared between the worker and whoever controls it.

    Thread-safe; the worker samples it between batches. Also exposes where
    the worker currently is, for status displays.
    """

    def __init__(self) -> None:
        self._pause = threading.Event()
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self.batch_id: UUID | None = None
        self.session_id: UUID | None = None
        self.chunk_number: int | None = None
        self.next_row: int | None = None

    def pause(self) -> None:
        self._pause.set()

    def resume(self) -> None:
        self._pause.clear()

    def stop(self) -> None:
        self._stop.set()

    def reset(self) -> None:
        self._pause.clear()
        self._stop.clear()

    @property
    def pause_requested(self) -> bool:
        return self._pause.is_set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def track(self, batch_id: UUID, session_id: UUID, chunk_number: int, next_row: int) -> None:
        with self._lock:
            self.batch_id = batch_id
            self.session_id = session_id
            self.chunk_number = chunk_number
            self.next_row = next_row

    def position(self) -> dict[str, Any]:
        with self._lock:
            return {
                "batch_id": self.batch_id,
                "session_id": self.session_id,
                "chunk_number": self.chunk_number,
                "next_row": self.next_row,
                "paused": self.pause_requested,
                "stopping": self.stop_requested,
            }


class SchedulerOutcome(BaseModel):
    """Where a run (or resume) came to rest."""

    batch_id: UUID
    state: OutcomeState
    rows_processed: int = 0
    rows_failed: int = 0
    duration_seconds: float = 0.0
    chunks: list[UploadSession] = Field(default_factory=list)
    paused_session_id: UUID | None = None
    failed_session_id: UUID | None = None
    error: str | None = None


class _BatchTally:
    """Counter deltas for one batch, applied in one update."""

    def __init__(self, size: int):
        self.rows_consumed = size
        self.processed = 0
        self.valid = 0
        self.invalid = 0
        self.corrected = 0
        self.failed = 0
        self.inserted = 0
        self.updated = 0

    def as_deltas(self) -> dict[str, int]:
        return {
            "rows_consumed": self.rows_consumed,
            "processed_records": self.processed,
            "valid_records": self.valid,
            "invalid_records": self.invalid,
            "corrected_records": self.corrected,
            "failed_records": self.failed,
            "inserted_records": self.inserted,
            "updated_records": self.updated,
        }


def original_payload(headers: Sequence[str], cells: Sequence[Any]) -> dict[str, str]:
    """Raw row keyed by header; repeated headers get a #n suffix."""
    payload: dict[str, str] = {}
    for index, header in enumerate(headers):
        key = header or f"column_{index + 1}"
        if key in payload:
            n = 2
            while f"{key}#{n}" in payload:
                n += 1
            key = f"{key}#{n}"
        cell = cells[index] if index < len(cells) else ""
        payload[key] = "" if cell is None else str(cell)
    return payload


class ChunkScheduler:
    """
    Drives an upload through normalize -> validate -> stage, chunk by chunk.

    Args:
        sessions: Upload session repository
        staging: Staging repository
        reconciler: Reconciliation engine, used when auto_reconcile is on
        normalizer: Header/cell normalizer
        validator: Row validator
        control: Pause/stop signals; one is created when omitted
        chunk_size: Rows per session
        batch_size: Rows between control checks and counter updates
        auto_reconcile: Reconcile accepted rows right after staging them
    """

    def __init__(
        self,
        sessions,
        staging,
        reconciler=None,
        normalizer: FieldNormalizer | None = None,
        validator: RecordValidator | None = None,
        control: SchedulerControl | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        batch_size: int = DEFAULT_BATCH_SIZE,
        auto_reconcile: bool = False,
    ):
        if chunk_size < 1 or batch_size < 1:
            raise ValueError("chunk_size and batch_size must be positive")
        if auto_reconcile and reconciler is None:
            raise ValueError("auto_reconcile requires a reconciler")

        self.sessions = sessions
        self.staging = staging
        self.reconciler = reconciler
        self.normalizer = normalizer or FieldNormalizer()
        self.validator = validator or RecordValidator()
        self.control = control or SchedulerControl()
        self.chunk_size = chunk_size
        self.batch_size = batch_size
        self.auto_reconcile = auto_reconcile

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def plan(self, source: RowSource, batch_id: UUID | None = None, chunk_size: int | None = None) -> list[UploadSession]:
        """Create one pending session per chunk of the upload."""
        size = chunk_size or self.chunk_size
        batch_id = batch_id or uuid4()
        total_chunks = max(1, math.ceil(source.total_rows / size))

        chunks = []
        for index in range(total_chunks):
            rows_in_chunk = min(size, source.total_rows - index * size)
            chunks.append(
                self.sessions.create(
                    UploadSession(
                        batch_id=batch_id,
                        filename=source.path,
                        original_filename=source.original_filename,
                        chunk_number=index + 1,
                        total_chunks=total_chunks,
                        file_size=source.file_size,
                        total_records=rows_in_chunk,
                    )
                )
            )

        logger.info(
            f"Planned {total_chunks} chunks for {source.original_filename}",
            extra={
                "batch_id": str(batch_id),
                "total_rows": source.total_rows,
                "total_chunks": total_chunks,
                "chunk_size": size,
            },
        )
        return chunks

    def run(self, source: RowSource, chunk_size: int | None = None) -> SchedulerOutcome:
        """
        Plan and process a new upload.

        Raises:
            UploadRejectedError: The header row lacks a required column
            ImportCancelledError: When stop is requested
        """
        self._check_headers(source)
        self.control.reset()
        chunks = self.plan(source, chunk_size=chunk_size)
        return self._drive(chunks[0].batch_id, chunks, source)

    def resume(self, batch_id: UUID, source: RowSource) -> SchedulerOutcome:
        """
        Continue an upload from its first paused or failed chunk.

        Completed chunks are skipped; the source is re-read and rows already
        consumed are skipped by position.

        Raises:
            SessionNotFoundError: No chunks exist for batch_id
            UploadRejectedError: The source no longer matches the planned chunks
            ImportCancelledError: When stop is requested
        """
        chunks = self.sessions.chunks_for_batch(batch_id)
        if not chunks:
            raise SessionNotFoundError(str(batch_id))

        planned_rows = sum(chunk.total_records for chunk in chunks)
        if planned_rows != source.total_rows:
            raise UploadRejectedError(
                source.original_filename,
                f"file has {source.total_rows} data rows but the upload was planned for {planned_rows}",
            )
        self._check_headers(source)

        self.control.reset()
        logger.info(
            "Resuming upload",
            extra={
                "batch_id": str(batch_id),
                "chunk_states": [f"{c.chunk_number}:{c.status}" for c in chunks],
            },
        )
        return self._drive(batch_id, chunks, source)

    def _check_headers(self, source: RowSource) -> None:
        missing = self.normalizer.missing_required(source.headers)
        if missing:
            raise UploadRejectedError(
                source.original_filename, f"Missing required headers: {', '.join(missing)}"
            )

    # ------------------------------------------------------------------
    # Chunk loop
    # ------------------------------------------------------------------

    def _drive(self, batch_id: UUID, chunks: list[UploadSession], source: RowSource) -> SchedulerOutcome:
        started = time.monotonic()
        outcome = SchedulerOutcome(batch_id=batch_id, state="completed")

        offsets = list(itertools.accumulate([0] + [c.total_records for c in chunks[:-1]]))
        pending = [(chunk, offset) for chunk, offset in zip(chunks, offsets) if chunk.status != "completed"]

        if pending:
            first_chunk, first_offset = pending[0]
            position = first_offset + first_chunk.rows_consumed
            rows = source.iter_rows(start=position)

            for chunk, offset in pending:
                target = offset + chunk.rows_consumed
                try:
                    while position < target:
                        next(rows)
                        position += 1
                except StopIteration:
                    rows = iter(())

                state, consumed, processed, failed = self._process_chunk(chunk, offset, rows, source.headers)
                position += consumed
                outcome.rows_processed += processed
                outcome.rows_failed += failed

                if state == "paused":
                    outcome.state = "paused"
                    outcome.paused_session_id = chunk.id
                    break
                if state == "failed":
                    outcome.state = "failed"
                    outcome.failed_session_id = chunk.id
                    outcome.error = self.sessions.get(chunk.id).error_message
                    break

        outcome.duration_seconds = round(time.monotonic() - started, 3)
        outcome.chunks = self.sessions.chunks_for_batch(batch_id)
        logger.info(
            f"Upload {outcome.state}: {outcome.rows_processed} rows processed, {outcome.rows_failed} failed",
            extra={
                "batch_id": str(batch_id),
                "state": outcome.state,
                "rows_processed": outcome.rows_processed,
                "rows_failed": outcome.rows_failed,
                "duration_seconds": outcome.duration_seconds,
            },
        )
        return outcome

    def _process_chunk(
        self,
        chunk: UploadSession,
        offset: int,
        rows: Iterator[list[str]],
        headers: list[str],
    ) -> tuple[str, int, int, int]:
        """
        Process the unconsumed rows of one chunk.

        Returns:
            (resting state, rows consumed, rows processed, rows failed)

        Raises:
            ImportCancelledError: When stop is requested
        """
        started = time.monotonic()
        consumed = processed = failed = 0
        next_row = offset + chunk.rows_consumed + 1
        remaining = chunk.total_records - chunk.rows_consumed

        try:
            with log_operation(
                f"Chunk {chunk.chunk_number}/{chunk.total_chunks}",
                logger=logger,
                session_id=str(chunk.id),
                start_row=next_row,
            ) as op:
                self.sessions.transition(chunk.id, "processing")
                seen_keys = set(self.staging.vcpns_for_session(chunk.id, before_row=next_row))

                while remaining > 0:
                    self.control.track(chunk.batch_id, chunk.id, chunk.chunk_number, next_row)

                    if self.control.stop_requested:
                        message = f"Cancelled by operator at row {next_row}"
                        self.sessions.transition(chunk.id, "failed", error_message=message)
                        metrics.record_chunk_finished("failed", processed, time.monotonic() - started)
                        raise ImportCancelledError(str(chunk.id), next_row)

                    if self.control.pause_requested:
                        self.sessions.transition(chunk.id, "paused")
                        metrics.record_chunk_finished("paused", processed, time.monotonic() - started)
                        logger.info(
                            f"Chunk {chunk.chunk_number} paused at row {next_row}",
                            extra={"session_id": str(chunk.id), "next_row": next_row},
                        )
                        return "paused", consumed, processed, failed

                    batch = list(itertools.islice(rows, min(self.batch_size, remaining)))
                    if not batch:
                        raise ChunkProcessingError(
                            str(chunk.id),
                            chunk.chunk_number,
                            EOFError(f"source ended at row {next_row - 1}, expected {remaining} more rows"),
                        )

                    tally = self._process_batch(chunk, next_row, batch, headers, seen_keys)
                    consumed += len(batch)
                    processed += tally.processed
                    failed += tally.failed
                    next_row += len(batch)
                    remaining -= len(batch)

                self.sessions.transition(chunk.id, "completed")
                op.note(rows_consumed=consumed, rows_processed=processed, rows_failed=failed)
                metrics.record_chunk_finished("completed", processed, time.monotonic() - started)
                return "completed", consumed, processed, failed

        except ImportCancelledError:
            raise
        except Exception as e:
            error = e if isinstance(e, ChunkProcessingError) else ChunkProcessingError(str(chunk.id), chunk.chunk_number, e)
            metrics.record_error(e, component="scheduler")
            metrics.record_chunk_finished("failed", processed, time.monotonic() - started)
            try:
                self.sessions.transition(chunk.id, "failed", error_message=str(error))
            except Exception as mark_error:
                logger.error(
                    f"Could not mark chunk {chunk.chunk_number} failed",
                    extra={"session_id": str(chunk.id), "error_message": str(mark_error)},
                )
                raise error from e
            return "failed", consumed, processed, failed

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def _process_batch(
        self,
        chunk: UploadSession,
        first_row: int,
        batch: list[list[str]],
        headers: list[str],
        seen_keys: set[str],
    ) -> _BatchTally:
        batch_started = time.monotonic()
        tally = _BatchTally(len(batch))
        records: list[StagingRecord] = []

        for row_number, cells in enumerate(batch, start=first_row):
            try:
                record = self._build_record(chunk.id, row_number, headers, cells, seen_keys)
            except Exception as e:
                tally.failed += 1
                metrics.increment_counter(metrics.row_failures_total, stage="staging")
                metrics.record_error(e, component="scheduler")
                logger.warning(
                    f"Row {row_number} could not be staged: {e}",
                    extra={"session_id": str(chunk.id), "row_number": row_number, "error_type": type(e).__name__},
                )
                continue
            records.append(record)

        inserted = self.staging.insert_batch(chunk.id, records)

        for record in records:
            tally.processed += 1
            if record.validation_status == "valid":
                tally.valid += 1
            elif record.validation_status == "invalid":
                tally.invalid += 1
            else:
                tally.corrected += 1
            metrics.increment_counter(metrics.rows_staged_total, status=record.validation_status)
            for issue in record.issues:
                metrics.increment_counter(
                    metrics.validation_issues_total,
                    issue_type=issue.issue_type,
                    field_name=issue.field_name,
                )

        if self.auto_reconcile:
            self._reconcile_batch(chunk.id, records, inserted, tally)

        self.sessions.update_progress(chunk.id, **tally.as_deltas())
        metrics.observe_histogram(metrics.batch_duration_seconds, time.monotonic() - batch_started)
        return tally

    def _reconcile_batch(
        self,
        session_id: UUID,
        records: list[StagingRecord],
        inserted: int,
        tally: _BatchTally,
    ) -> None:
        if inserted < len(records):
            # A replayed batch: rows committed by the earlier attempt keep
            # their stored ids. Its counter update never landed, so rows it
            # already processed are credited here.
            stored = {
                r.row_number: r
                for r in self.staging.get_by_row_numbers(session_id, [r.row_number for r in records])
            }
            records = [stored.get(r.row_number, r) for r in records]
            for record in records:
                if record.validation_status == "processed" and record.action_type == "insert":
                    tally.inserted += 1
                elif record.validation_status == "processed" and record.action_type == "update":
                    tally.updated += 1

        for record in records:
            if not record.is_accepted:
                continue
            result = self.reconciler.reconcile(record, session_id, count=False)
            if result.action == "failed":
                tally.failed += 1
            elif result.first_processing and result.action == "insert":
                tally.inserted += 1
            elif result.first_processing and result.action == "update":
                tally.updated += 1

    def _build_record(
        self,
        session_id: UUID,
        row_number: int,
        headers: list[str],
        cells: list[str],
        seen_keys: set[str],
    ) -> StagingRecord:
        formula_log: dict[str, str] = {}
        fields = self.normalizer.normalize_row(headers, cells, formula_log=formula_log)
        result = self.validator.validate(fields, row_number, formula_log=formula_log)

        canonical, extras = StagingRecord.split_fields(result.cleaned)
        issues = list(result.issues)
        notes = result.notes
        needs_review = result.needs_review

        vcpn = canonical.get("vcpn") or ""
        if vcpn and vcpn in seen_keys:
            duplicate = ValidationIssue(
                issue_type="duplicate",
                field_name="vcpn",
                description=f"VCPN {vcpn} appears more than once in this chunk",
                suggested_fix="Remove or merge the duplicate rows",
                severity="warning",
                row_number=row_number,
                old_value=vcpn,
            )
            issues.append(duplicate)
            notes = [*notes, duplicate.description]
            needs_review = True
        elif vcpn:
            seen_keys.add(vcpn)

        return StagingRecord(
            upload_session_id=session_id,
            row_number=row_number,
            original_data=original_payload(headers, cells),
            **canonical,
            extra_fields=extras,
            validation_status=result.status,
            needs_review=needs_review,
            issues=issues,
            validation_notes=notes,
        )

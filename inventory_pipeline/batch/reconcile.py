"""
Reconciliation of accepted staging rows into the inventory store.

Each row is applied in its own transaction: the inventory upsert and the
staging row's move to processed commit together or not at all. A failure
is counted against the row's session and reported in the result; it is
never raised to the caller.

Once an upload has completed, inventory records that it no longer lists
can be soft-marked for deletion.
"""

import time
from collections.abc import Iterable
from typing import Literal
from uuid import UUID

from psycopg import Error as DatabaseError
from pydantic import BaseModel, Field

from inventory_pipeline.core.exceptions import (
    ReconciliationError,
    SessionNotFoundError,
    StagingRecordNotFoundError,
    UploadIncompleteError,
)
from inventory_pipeline.core.models import ACCEPTED_STATUSES, InventoryRecord, StagingRecord, utc_now
from inventory_pipeline.observability import metrics
from inventory_pipeline.observability.logger import get_logger
from inventory_pipeline.warehouse.connection import DatabaseConnectionPool
from inventory_pipeline.warehouse.inventory import InventoryRepository
from inventory_pipeline.warehouse.sessions import UploadSessionRepository
from inventory_pipeline.warehouse.staging import StagingRepository

logger = get_logger(__name__)

ReconcileAction = Literal["insert", "update", "delete", "skip", "failed"]

# processed rows may be re-applied; the upsert is deterministic
RECONCILABLE_STATUSES: tuple[str, ...] = ACCEPTED_STATUSES + ("processed",)


class ReconcileResult(BaseModel):
    """Outcome for one staging row, or for one inventory record marked for deletion."""

    record_id: UUID | None = None
    row_number: int | None = None
    vcpn: str | None = None
    action: ReconcileAction
    inventory_id: UUID | None = None
    first_processing: bool = False
    error: str | None = None


class ReconcileSummary(BaseModel):
    """Outcome for a set of rows."""

    attempted: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    results: list[ReconcileResult] = Field(default_factory=list)

    def add(self, result: ReconcileResult) -> None:
        self.attempted += 1
        if result.action == "insert":
            self.inserted += 1
        elif result.action == "update":
            self.updated += 1
        elif result.action == "delete":
            self.deleted += 1
        elif result.action == "skip":
            self.skipped += 1
        else:
            self.failed += 1
            if result.error:
                self.errors.append(result.error)
        self.results.append(result)


class ReconciliationEngine:
    """
    Upserts staging rows into inventory by vcpn.

    Args:
        pool: Database connection pool
        staging: Staging repository
        inventory: Inventory repository
        sessions: Upload session repository (for counters)
        timeout_seconds: statement_timeout for each row's transaction
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        staging: StagingRepository | None = None,
        inventory: InventoryRepository | None = None,
        sessions: UploadSessionRepository | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.pool = pool
        self.staging = staging or StagingRepository(pool)
        self.inventory = inventory or InventoryRepository(pool)
        self.sessions = sessions or UploadSessionRepository(pool)
        self.timeout_seconds = timeout_seconds

    def reconcile(
        self,
        record: StagingRecord | UUID,
        session_id: UUID | None = None,
        count: bool = True,
    ) -> ReconcileResult:
        """
        Apply one staging row to the inventory store.

        Args:
            record: The row, or its id
            session_id: Session to credit; defaults to the row's own session
            count: Update the session counters here. The chunk scheduler
                passes False and folds the outcome into its batch update.

        Returns:
            ReconcileResult; action "failed" carries the error message
        """
        if isinstance(record, UUID):
            record = self.staging.get(record)
        session_id = session_id or record.upload_session_id

        if record.validation_status not in RECONCILABLE_STATUSES or not record.vcpn:
            metrics.increment_counter(metrics.reconciliations_total, action="skip", outcome="success")
            return ReconcileResult(
                record_id=record.id,
                row_number=record.row_number,
                vcpn=record.vcpn or None,
                action="skip",
            )

        first_processing = record.processed_at is None
        target = InventoryRecord.from_fields(record, session_id)
        target.extra_fields = dict(record.extra_fields)

        started = time.monotonic()
        try:
            with self.pool.transaction(self.timeout_seconds) as cur:
                inventory_id, inserted = self.inventory.upsert(target, cur=cur)
                action = "insert" if inserted else "update"
                self.staging.update(
                    record.id,
                    {
                        "validation_status": "processed",
                        "processed_at": utc_now(),
                        "existing_inventory_id": inventory_id,
                        "action_type": action,
                        "needs_review": False,
                    },
                    cur=cur,
                )
        except (DatabaseError, StagingRecordNotFoundError) as e:
            error = ReconciliationError(str(record.id), record.row_number, record.vcpn, e)
            logger.warning(
                str(error),
                extra={
                    "record_id": str(record.id),
                    "session_id": str(session_id),
                    "row_number": record.row_number,
                    "vcpn": record.vcpn,
                    "error_type": type(e).__name__,
                },
            )
            metrics.increment_counter(metrics.reconciliations_total, action="upsert", outcome="failure")
            metrics.increment_counter(metrics.row_failures_total, stage="reconcile")
            metrics.record_error(e, component="reconcile")
            if count:
                self.sessions.update_progress(session_id, failed_records=1)
            return ReconcileResult(
                record_id=record.id,
                row_number=record.row_number,
                vcpn=record.vcpn,
                action="failed",
                error=str(error),
            )

        metrics.observe_histogram(metrics.reconcile_duration_seconds, time.monotonic() - started)
        metrics.increment_counter(metrics.reconciliations_total, action=action, outcome="success")

        if count and first_processing:
            if action == "insert":
                self.sessions.update_progress(session_id, inserted_records=1)
            else:
                self.sessions.update_progress(session_id, updated_records=1)

        return ReconcileResult(
            record_id=record.id,
            row_number=record.row_number,
            vcpn=record.vcpn,
            action=action,
            inventory_id=inventory_id,
            first_processing=first_processing,
        )

    def reconcile_many(self, record_ids: Iterable[UUID]) -> ReconcileSummary:
        """Reconcile the given rows one by one; unknown ids count as failed."""
        summary = ReconcileSummary()
        for record_id in record_ids:
            try:
                record = self.staging.get(record_id)
            except StagingRecordNotFoundError as e:
                summary.add(ReconcileResult(record_id=record_id, action="failed", error=str(e)))
                continue
            summary.add(self.reconcile(record))
        self._log_summary(summary, record_count=summary.attempted)
        return summary

    def reconcile_all_accepted(self, session_id: UUID, page_size: int = 500) -> ReconcileSummary:
        """Reconcile every valid or corrected row of a session."""
        self.sessions.get(session_id)
        summary = ReconcileSummary()
        for record in self.staging.iter_session(session_id, ACCEPTED_STATUSES, page_size=page_size):
            summary.add(self.reconcile(record, session_id))
        self._log_summary(summary, session_id=str(session_id))
        return summary

    def mark_missing_for_deletion(self, batch_id: UUID) -> ReconcileSummary:
        """
        Soft-mark inventory records that a completed upload no longer lists.

        Only records written by an earlier upload are considered. They are
        flagged with the time and the upload's batch id, never removed; the
        next upsert of the same key clears the flag.

        Raises:
            SessionNotFoundError: No chunks exist for batch_id
            UploadIncompleteError: A chunk of the upload is not completed
        """
        chunks = self.sessions.chunks_for_batch(batch_id)
        if not chunks:
            raise SessionNotFoundError(str(batch_id))
        open_chunks = [c.chunk_number for c in chunks if c.status != "completed"]
        if open_chunks:
            raise UploadIncompleteError(str(batch_id), open_chunks)

        summary = ReconcileSummary()
        for row in self.inventory.mark_missing(batch_id, [c.id for c in chunks]):
            summary.add(ReconcileResult(vcpn=row["vcpn"], action="delete", inventory_id=row["id"]))
        metrics.increment_counter(metrics.reconciliations_total, summary.deleted, action="delete", outcome="success")
        logger.info(
            f"Marked {summary.deleted} inventory records missing from the upload for deletion",
            extra={"batch_id": str(batch_id), "deleted": summary.deleted},
        )
        return summary

    def preview_actions(self, session_id: UUID) -> int:
        """
        Label accepted, unprocessed rows with the action reconciliation would take.

        Returns:
            Number of rows labeled
        """
        self.sessions.get(session_id)
        labeled = self.staging.set_action_types(session_id)
        logger.info(
            f"Labeled {labeled} rows with insert/update actions",
            extra={"session_id": str(session_id), "labeled": labeled},
        )
        return labeled

    @staticmethod
    def _log_summary(summary: ReconcileSummary, **context) -> None:
        logger.info(
            f"Reconciled {summary.attempted} rows: {summary.inserted} inserted, "
            f"{summary.updated} updated, {summary.skipped} skipped, {summary.failed} failed",
            extra={
                "attempted": summary.attempted,
                "inserted": summary.inserted,
                "updated": summary.updated,
                "skipped": summary.skipped,
                "failed": summary.failed,
                **context,
            },
        )

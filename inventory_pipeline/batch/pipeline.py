"""
Inventory import pipeline orchestration.

InventoryImportPipeline is the single entry point used by the CLI (and any
web layer): upload and resume files, review and edit staged rows, push them
into inventory, run mass corrections and watch progress.

Flow: read → normalize → validate → stage → (review) → reconcile
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Any
from uuid import UUID

from pyspark.sql import SparkSession

from inventory_pipeline.batch.mass_correction import ALL_IN_SESSION, MassCorrectionOperator, MassCorrectionResult
from inventory_pipeline.batch.readers import CSVReader
from inventory_pipeline.batch.reconcile import ReconcileResult, ReconcileSummary, ReconciliationEngine
from inventory_pipeline.batch.scheduler import ChunkScheduler, SchedulerControl, SchedulerOutcome
from inventory_pipeline.core.config import PipelineSettings
from inventory_pipeline.core.exceptions import SessionNotFoundError, StagingRecordNotFoundError
from inventory_pipeline.core.fields import (
    AGGREGATE_QTY_FIELD,
    BOOLEAN_FIELDS,
    CANONICAL_FIELDS,
    COMPOSITE_KEY_FIELD,
    DECIMAL_FIELDS,
    INTEGER_FIELDS,
    FieldNormalizer,
    clean_cell,
    compute_composite_key,
    strip_formula,
    sum_location_quantities,
)
from inventory_pipeline.core.models import StagingFilter, StagingPage, StagingRecord, UploadSession
from inventory_pipeline.core.validators import RecordValidator, RuleViolation, TypeValidator, change_note
from inventory_pipeline.observability.logger import get_logger
from inventory_pipeline.observability.progress import ProgressReporter, ProgressSnapshot
from inventory_pipeline.utils.cooldown import ShippingQuoteClient
from inventory_pipeline.utils.validation import (
    InputValidationError,
    validate_file_path,
    validate_limit,
    validate_page,
    validate_search_term,
    validate_uuid,
    validate_uuid_list,
)
from inventory_pipeline.warehouse.connection import DatabaseConnectionPool
from inventory_pipeline.warehouse.inventory import InventoryRepository
from inventory_pipeline.warehouse.sessions import UploadSessionRepository
from inventory_pipeline.warehouse.staging import StagingRepository

logger = get_logger(__name__)

# Derived server-side on every edit
DERIVED_FIELDS = frozenset({COMPOSITE_KEY_FIELD, AGGREGATE_QTY_FIELD})

_COERCERS: dict[str, TypeValidator] = {
    **{name: TypeValidator(name, {"expected_type": "integer"}) for name in INTEGER_FIELDS},
    **{name: TypeValidator(name, {"expected_type": "decimal"}) for name in DECIMAL_FIELDS},
    **{name: TypeValidator(name, {"expected_type": "boolean"}) for name in BOOLEAN_FIELDS},
}


def compute_edit(record: StagingRecord, changes: Mapping[str, Any]) -> dict[str, Any]:
    """
    Turn an operator's edit into the staging columns to write.

    Values are coerced like uploaded cells; vcpn and total_qty are
    recomputed from the edited row and cannot be set directly. Every
    changed field gets a note.

    Raises:
        InputValidationError: Unknown field, or a value that cannot be coerced
    """
    unknown = set(changes) - set(CANONICAL_FIELDS)
    if unknown:
        raise InputValidationError(f"Unknown fields: {sorted(unknown)}")

    current = record.canonical_values()
    edited = dict(current)
    for name, raw in changes.items():
        if name in DERIVED_FIELDS:
            continue
        if name in _COERCERS:
            try:
                edited[name] = _COERCERS[name].validate(raw, edited)
            except RuleViolation as violation:
                raise InputValidationError(f"{name}: {violation.message}") from None
        else:
            edited[name] = clean_cell(raw)

    edited["part_number"] = strip_formula(edited["part_number"])
    edited[COMPOSITE_KEY_FIELD] = compute_composite_key(edited["vendor_code"], edited["part_number"])
    edited[AGGREGATE_QTY_FIELD] = sum_location_quantities(edited)

    columns = {name: value for name, value in edited.items() if value != current[name]}
    notes = [change_note(name, current[name], value) for name, value in columns.items()]

    return {
        **columns,
        "validation_status": "corrected",
        # a row without a key cannot be reconciled, so it stays flagged
        "needs_review": not edited[COMPOSITE_KEY_FIELD],
        "validation_notes": [*record.validation_notes, *notes],
    }


class InventoryImportPipeline:
    """
    Facade over the import components.

    Args:
        pool: Open database connection pool
        spark: Spark session used to read uploads; only upload and resume need one
        settings: Pipeline settings; loaded from config/env when omitted
        reader: Upload reader; a CSVReader over spark by default
        fetch_quote: Carrier-rate lookup guarded by the shipping-quote cooldown
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        spark: SparkSession | None = None,
        settings: PipelineSettings | None = None,
        reader=None,
        fetch_quote: Callable[..., Any] | None = None,
    ):
        self.pool = pool
        self.settings = settings or PipelineSettings.load()
        self.reader = reader or (CSVReader(spark) if spark is not None else None)

        self.sessions = UploadSessionRepository(pool)
        self.staging = StagingRepository(pool)
        self.inventory = InventoryRepository(pool)
        self.normalizer = FieldNormalizer(self.settings.header_synonyms)
        self.validator = RecordValidator()
        self.control = SchedulerControl()

        self.engine = ReconciliationEngine(
            pool,
            staging=self.staging,
            inventory=self.inventory,
            sessions=self.sessions,
            timeout_seconds=self.settings.reconcile_timeout_seconds,
        )
        self.scheduler = ChunkScheduler(
            self.sessions,
            self.staging,
            reconciler=self.engine,
            normalizer=self.normalizer,
            validator=self.validator,
            control=self.control,
            chunk_size=self.settings.chunk_size,
            batch_size=self.settings.batch_size,
            auto_reconcile=self.settings.auto_reconcile,
        )
        self.mass_corrector = MassCorrectionOperator(self.staging, self.sessions)
        self.reporter = ProgressReporter(self.sessions, self.settings.stalled_after_seconds)
        self.shipping_quotes = (
            ShippingQuoteClient(fetch_quote, self.settings.shipping_quote_cooldown_seconds)
            if fetch_quote is not None
            else None
        )

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def upload(
        self,
        path: str,
        content_type: str | None = None,
        chunk_size: int | None = None,
        original_filename: str | None = None,
    ) -> SchedulerOutcome:
        """
        Stage a CSV upload.

        Raises:
            UploadRejectedError: Not a CSV, missing, empty or lacking a required
                column; no session is created
            ImportCancelledError: Stopped by the operator
        """
        path = validate_file_path(path, "path")
        reader = self._require_reader()
        if chunk_size is not None:
            chunk_size = validate_limit(chunk_size, "chunk_size", max_limit=1_000_000)
        source = reader.open(path, content_type=content_type, original_filename=original_filename)
        return self.scheduler.run(source, chunk_size=chunk_size)

    def resume(self, batch_id: UUID | str, path: str) -> SchedulerOutcome:
        """Continue a paused or failed upload from the same file."""
        batch_id = validate_uuid(batch_id, "batch_id")
        chunks = self.sessions.chunks_for_batch(batch_id)
        if not chunks:
            raise SessionNotFoundError(str(batch_id))
        source = self._require_reader().open(
            validate_file_path(path, "path"),
            original_filename=chunks[0].original_filename,
        )
        return self.scheduler.resume(batch_id, source)

    def _require_reader(self):
        if self.reader is None:
            raise RuntimeError("Reading uploads requires a Spark session or a reader")
        return self.reader

    def pause(self) -> None:
        logger.info("Pause requested", extra=self.control.position())
        self.control.pause()

    def stop(self) -> None:
        logger.info("Stop requested", extra=self.control.position())
        self.control.stop()

    def progress(self, batch_id: UUID | str) -> ProgressSnapshot:
        return self.reporter.run_progress(validate_uuid(batch_id, "batch_id"))

    def session_progress(self, session_id: UUID | str) -> ProgressSnapshot:
        return self.reporter.session_progress(validate_uuid(session_id, "session_id"))

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def list_sessions(self, limit: int = 50, batch_id: UUID | str | None = None) -> list[UploadSession]:
        limit = validate_limit(limit, max_limit=1000)
        if batch_id is not None:
            batch_id = validate_uuid(batch_id, "batch_id")
        return self.sessions.list(limit=limit, batch_id=batch_id)

    def query_staging(
        self,
        session_id: UUID | str,
        status: str | None = None,
        needs_review: bool | None = None,
        action_type: str | None = None,
        search_term: str | None = None,
        issue_type: str | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> StagingPage:
        """One filtered page of a session's staged rows."""
        session_id = validate_uuid(session_id, "session_id")
        page = validate_page(page)
        page_size = validate_limit(
            page_size or self.settings.page_size,
            "page_size",
            max_limit=self.settings.max_page_size,
        )
        filters = StagingFilter(
            status=status,
            needs_review=needs_review,
            action_type=action_type,
            search_term=validate_search_term(search_term),
            issue_type=issue_type,
        )
        self.sessions.get(session_id)
        return self.staging.query(session_id, filters, page=page, page_size=page_size)

    def edit_row(self, record_id: UUID | str, changes: Mapping[str, Any]) -> StagingRecord:
        """
        Apply an operator edit to one staged row.

        The row becomes corrected with vcpn and total_qty recomputed. A
        processed row may be edited and then processed again.
        """
        record_id = validate_uuid(record_id, "record_id")
        if not changes:
            raise InputValidationError("changes must not be empty")
        record = self.staging.get(record_id)
        updated = self.staging.update(record_id, compute_edit(record, changes))
        logger.info(
            f"Row {record.row_number} edited",
            extra={
                "record_id": str(record_id),
                "session_id": str(record.upload_session_id),
                "fields": sorted(changes),
            },
        )
        return updated

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def process_one(self, record_id: UUID | str) -> ReconcileResult:
        return self.engine.reconcile(validate_uuid(record_id, "record_id"))

    def process_selected(self, record_ids: Iterable[UUID | str]) -> ReconcileSummary:
        return self.engine.reconcile_many(validate_uuid_list(record_ids, "record_ids"))

    def process_all_valid(self, session_id: UUID | str) -> ReconcileSummary:
        return self.engine.reconcile_all_accepted(validate_uuid(session_id, "session_id"))

    def preview_actions(self, session_id: UUID | str) -> int:
        return self.engine.preview_actions(validate_uuid(session_id, "session_id"))

    def mark_missing_for_deletion(self, batch_id: UUID | str) -> ReconcileSummary:
        """Flag inventory records a completed upload no longer lists."""
        return self.engine.mark_missing_for_deletion(validate_uuid(batch_id, "batch_id"))

    # ------------------------------------------------------------------
    # Corrections and deletes
    # ------------------------------------------------------------------

    def mass_correct(
        self,
        session_id: UUID | str,
        correction_type: str,
        targets: Iterable[UUID | str] | str = ALL_IN_SESSION,
    ) -> MassCorrectionResult:
        session_id = validate_uuid(session_id, "session_id")
        if not isinstance(targets, str):
            targets = validate_uuid_list(targets, "targets")
        return self.mass_corrector.apply(session_id, correction_type, targets)

    def delete_session(self, session_id: UUID | str) -> None:
        """Delete a session and its staged rows; inventory is not touched."""
        session_id = validate_uuid(session_id, "session_id")
        if not self.sessions.delete(session_id):
            raise SessionNotFoundError(str(session_id))
        logger.info("Session deleted", extra={"session_id": str(session_id)})

    def delete_row(self, record_id: UUID | str) -> None:
        record_id = validate_uuid(record_id, "record_id")
        if not self.staging.delete(record_id):
            raise StagingRecordNotFoundError(str(record_id))
        logger.info("Staging row deleted", extra={"record_id": str(record_id)})

    # ------------------------------------------------------------------
    # Shipping quotes
    # ------------------------------------------------------------------

    def request_shipping_quote(self, *args: Any, **kwargs: Any) -> Any:
        """
        Forward a shipping-quote request, at most once per cooldown window.

        Raises:
            CooldownActiveError: Inside the cooldown window
        """
        if self.shipping_quotes is None:
            raise RuntimeError("No shipping quote provider configured")
        return self.shipping_quotes.request_quote(*args, **kwargs)

    def seconds_until_next_quote(self) -> float:
        if self.shipping_quotes is None:
            return 0.0
        return self.shipping_quotes.seconds_until_next_quote()

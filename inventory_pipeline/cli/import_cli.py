"""
Command-line interface for inventory imports.

Usage:
    python -m inventory_pipeline.cli.import_cli upload --input <file.csv> [options]
    python -m inventory_pipeline.cli.import_cli resume --batch-id <id> --input <file.csv>
    python -m inventory_pipeline.cli.import_cli sessions [--batch-id <id>] [--limit N]
    python -m inventory_pipeline.cli.import_cli records --session-id <id> [filters]
    python -m inventory_pipeline.cli.import_cli edit --record-id <id> --set field=value [...]
    python -m inventory_pipeline.cli.import_cli process (--record-ids <ids> | --session-id <id>)
    python -m inventory_pipeline.cli.import_cli mark-missing --batch-id <id>
    python -m inventory_pipeline.cli.import_cli mass-correct --session-id <id> --type <type> [--record-ids <ids>]
    python -m inventory_pipeline.cli.import_cli progress --batch-id <id>
    python -m inventory_pipeline.cli.import_cli delete-session --session-id <id>
    python -m inventory_pipeline.cli.import_cli delete-row --record-id <id>
"""

import argparse
import signal
import sys
from datetime import datetime

from pyspark.sql import SparkSession

from inventory_pipeline.batch.mass_correction import ALL_IN_SESSION, CORRECTIONS
from inventory_pipeline.batch.pipeline import InventoryImportPipeline
from inventory_pipeline.batch.reconcile import ReconcileSummary
from inventory_pipeline.batch.scheduler import SchedulerOutcome
from inventory_pipeline.core.config import PipelineSettings
from inventory_pipeline.core.exceptions import ImportCancelledError, PipelineError
from inventory_pipeline.core.models import ISSUE_TYPES
from inventory_pipeline.observability import metrics
from inventory_pipeline.observability.logger import get_logger, setup_logger
from inventory_pipeline.observability.progress import ProgressSnapshot
from inventory_pipeline.utils.validation import InputValidationError
from inventory_pipeline.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_INPUT = 2
EXIT_CANCELLED = 130


def create_spark_session(app_name: str = "InventoryImport") -> SparkSession:
    """
    Create Spark session for reading uploads.

    Args:
        app_name: Application name
    """
    return (
        SparkSession.builder
        .appName(app_name)
        .master("local[*]")
        .config("spark.ui.enabled", "false")
        .config("spark.sql.adaptive.enabled", "true")
        .getOrCreate()
    )


def format_timestamp(ts: datetime | None) -> str:
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def parse_assignments(pairs: list[str]) -> dict[str, str]:
    """
    Parse --set field=value pairs.

    Examples:
        >>> parse_assignments(["east_qty=5", "long_description=Brake pad"])
        {'east_qty': '5', 'long_description': 'Brake pad'}
    """
    changes: dict[str, str] = {}
    for pair in pairs:
        field, sep, value = pair.partition("=")
        if not sep or not field.strip():
            raise InputValidationError(f"Expected field=value, got {pair!r}")
        changes[field.strip()] = value
    return changes


def install_stop_handlers(pipeline: InventoryImportPipeline) -> None:
    """SIGINT/SIGTERM ask the running import to stop at the next batch boundary."""

    def request_stop(signum, frame):
        print(f"\nReceived {signal.Signals(signum).name}, stopping after the current batch...")
        pipeline.stop()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)


# =======================
# OUTPUT
# =======================

def print_outcome(outcome: SchedulerOutcome) -> None:
    print(f"\n{'=' * 80}")
    print(f"UPLOAD {outcome.state.upper()}  batch_id={outcome.batch_id}")
    print(f"{'=' * 80}")
    print(f"Rows processed this run: {outcome.rows_processed}")
    print(f"Rows failed this run:    {outcome.rows_failed}")
    print(f"Duration:                {outcome.duration_seconds:.1f}s\n")

    print(f"{'Chunk':<8} {'Status':<12} {'Consumed':>10} {'Valid':>8} {'Corrected':>10} {'Invalid':>8} {'Failed':>8}")
    print(f"{'-' * 80}")
    for chunk in outcome.chunks:
        print(
            f"{chunk.chunk_number:<8} {chunk.status:<12} "
            f"{chunk.rows_consumed:>5}/{chunk.total_records:<4} "
            f"{chunk.valid_records:>8} {chunk.corrected_records:>10} "
            f"{chunk.invalid_records:>8} {chunk.failed_records:>8}"
        )

    if outcome.state == "paused":
        print(f"\nPaused. Resume with: resume --batch-id {outcome.batch_id} --input <file>")
    elif outcome.state == "failed":
        print(f"\nFailed: {outcome.error}")
        print(f"Resume with: resume --batch-id {outcome.batch_id} --input <file>")
    print()


def print_summary(summary: ReconcileSummary) -> None:
    print(
        f"\nReconciled {summary.attempted} rows: {summary.inserted} inserted, "
        f"{summary.updated} updated, {summary.skipped} skipped, {summary.failed} failed"
    )
    for error in summary.errors:
        print(f"  - {error}")
    print()


def print_progress(snapshot: ProgressSnapshot) -> None:
    print(f"\n{snapshot.original_filename}  [{snapshot.status}]{'  STALLED' if snapshot.stalled else ''}")
    print(f"  Progress:   {snapshot.rows_consumed}/{snapshot.total_records} ({snapshot.percent_complete:.1f}%)")
    print(
        f"  Outcomes:   {snapshot.valid_records} valid, {snapshot.corrected_records} corrected, "
        f"{snapshot.invalid_records} invalid, {snapshot.failed_records} failed"
    )
    print(f"  Inventory:  {snapshot.inserted_records} inserted, {snapshot.updated_records} updated")
    print(f"  Elapsed:    {snapshot.elapsed_seconds:.1f}s at {snapshot.throughput:.1f} rows/s")
    if snapshot.eta_seconds is not None:
        print(f"  Remaining:  ~{snapshot.eta_seconds:.0f}s")
    for chunk in snapshot.chunks:
        suffix = f"  ({chunk.error_message})" if chunk.error_message else ""
        print(f"    chunk {chunk.chunk_number}: {chunk.status} {chunk.rows_consumed}/{chunk.total_records}{suffix}")
    print()


# =======================
# COMMANDS
# =======================

def serve_metrics(args) -> None:
    port = getattr(args, "metrics_port", None)
    if port:
        metrics.start_metrics_server(port)
        logger.info(f"Serving metrics on port {port}", extra={"metrics_port": port})


def upload_command(pipeline: InventoryImportPipeline, args) -> int:
    install_stop_handlers(pipeline)
    serve_metrics(args)
    outcome = pipeline.upload(args.input, content_type=args.content_type, chunk_size=args.chunk_size)
    print_outcome(outcome)
    return EXIT_FAILED if outcome.state == "failed" else EXIT_OK


def resume_command(pipeline: InventoryImportPipeline, args) -> int:
    install_stop_handlers(pipeline)
    serve_metrics(args)
    outcome = pipeline.resume(args.batch_id, args.input)
    print_outcome(outcome)
    return EXIT_FAILED if outcome.state == "failed" else EXIT_OK


def sessions_command(pipeline: InventoryImportPipeline, args) -> int:
    sessions = pipeline.list_sessions(limit=args.limit, batch_id=args.batch_id)
    if not sessions:
        print("\nNo upload sessions found.\n")
        return EXIT_OK

    print(f"\n{'Session ID':<38} {'File':<24} {'Chunk':<7} {'Status':<11} {'Rows':>11} {'Created'}")
    print(f"{'-' * 110}")
    for s in sessions:
        print(
            f"{str(s.id):<38} {s.original_filename[:24]:<24} "
            f"{s.chunk_number}/{s.total_chunks:<5} {s.status:<11} "
            f"{s.rows_consumed:>5}/{s.total_records:<5} {format_timestamp(s.created_at)}"
        )
    print()
    return EXIT_OK


def records_command(pipeline: InventoryImportPipeline, args) -> int:
    page = pipeline.query_staging(
        args.session_id,
        status=args.status,
        needs_review=True if args.needs_review else None,
        action_type=args.action_type,
        search_term=args.search,
        issue_type=args.issue_type,
        page=args.page,
        page_size=args.page_size,
    )
    print(f"\nPage {page.page} of {page.page_count} ({page.total_count} matching rows)\n")
    print(f"{'Row':>6} {'Record ID':<38} {'VCPN':<20} {'Status':<10} {'Review':<7} {'Notes'}")
    print(f"{'-' * 110}")
    for r in page.records:
        notes = "; ".join(r.validation_notes)
        print(
            f"{r.row_number:>6} {str(r.id):<38} {r.vcpn[:20]:<20} {r.validation_status:<10} "
            f"{'yes' if r.needs_review else 'no':<7} {notes[:60]}"
        )
    print()
    return EXIT_OK


def edit_command(pipeline: InventoryImportPipeline, args) -> int:
    record = pipeline.edit_row(args.record_id, parse_assignments(args.set))
    print(f"\nRow {record.row_number} is now {record.validation_status} (vcpn={record.vcpn}, total_qty={record.total_qty})")
    for note in record.validation_notes:
        print(f"  - {note}")
    print()
    return EXIT_OK


def process_command(pipeline: InventoryImportPipeline, args) -> int:
    if args.record_ids:
        summary = pipeline.process_selected(args.record_ids.split(","))
    else:
        if args.preview:
            labeled = pipeline.preview_actions(args.session_id)
            print(f"\nLabeled {labeled} rows with insert/update actions\n")
            return EXIT_OK
        summary = pipeline.process_all_valid(args.session_id)
    print_summary(summary)
    return EXIT_FAILED if summary.failed else EXIT_OK


def mark_missing_command(pipeline: InventoryImportPipeline, args) -> int:
    summary = pipeline.mark_missing_for_deletion(args.batch_id)
    print(f"\nMarked {summary.deleted} inventory records for deletion")
    for result in summary.results[: args.show]:
        print(f"  - {result.vcpn}")
    if summary.deleted > args.show:
        print(f"  ... {summary.deleted - args.show} more")
    print()
    return EXIT_OK


def mass_correct_command(pipeline: InventoryImportPipeline, args) -> int:
    targets = args.record_ids.split(",") if args.record_ids else ALL_IN_SESSION
    result = pipeline.mass_correct(args.session_id, args.type, targets)
    print(f"\n{result.correction_type}: changed {result.changed} of {result.examined} rows")
    for note in result.notes[: args.show_notes]:
        print(f"  - {note}")
    if len(result.notes) > args.show_notes:
        print(f"  ... {len(result.notes) - args.show_notes} more")
    print()
    return EXIT_OK


def progress_command(pipeline: InventoryImportPipeline, args) -> int:
    if args.session_id:
        print_progress(pipeline.session_progress(args.session_id))
    else:
        print_progress(pipeline.progress(args.batch_id))
    return EXIT_OK


def delete_session_command(pipeline: InventoryImportPipeline, args) -> int:
    pipeline.delete_session(args.session_id)
    print(f"\nDeleted session {args.session_id} and its staged rows\n")
    return EXIT_OK


def delete_row_command(pipeline: InventoryImportPipeline, args) -> int:
    pipeline.delete_row(args.record_id)
    print(f"\nDeleted staged row {args.record_id}\n")
    return EXIT_OK


COMMANDS = {
    "upload": upload_command,
    "resume": resume_command,
    "sessions": sessions_command,
    "records": records_command,
    "edit": edit_command,
    "process": process_command,
    "mark-missing": mark_missing_command,
    "mass-correct": mass_correct_command,
    "progress": progress_command,
    "delete-session": delete_session_command,
    "delete-row": delete_row_command,
}

NEEDS_SPARK = frozenset({"upload", "resume"})


def add_db_arguments(parser: argparse.ArgumentParser) -> None:
    """Connection options; unset ones fall back to DB_* environment variables."""
    parser.add_argument("--db-host", default=None, help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, default=None, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", default=None, help="Database name (default: $DB_NAME or inventory)")
    parser.add_argument("--db-user", default=None, help="Database user (default: $DB_USER or pipeline)")
    parser.add_argument("--db-password", default=None, help="Database password (default: $DB_PASSWORD)")
    parser.add_argument("--config", default=None, help="Pipeline YAML (default: $PIPELINE_CONFIG or config/pipeline.yaml)")
    parser.add_argument("--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO)")
    parser.add_argument("--log-format", choices=["json", "text"], default=None, help="Log format (default: $LOG_FORMAT or json)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Vendor inventory CSV import pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Upload a vendor file in chunks of 2000 rows
  python -m inventory_pipeline.cli.import_cli upload --input data/vendor.csv --chunk-size 2000

  # Review rows that need attention
  python -m inventory_pipeline.cli.import_cli records --session-id <id> --needs-review

  # Strip ="..." wrapping from every part number in a session
  python -m inventory_pipeline.cli.import_cli mass-correct --session-id <id> --type strip_formula

  # Push all accepted rows into inventory
  python -m inventory_pipeline.cli.import_cli process --session-id <id>
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    upload_parser = subparsers.add_parser("upload", help="Stage a CSV upload")
    upload_parser.add_argument("--input", required=True, help="Path to the CSV file")
    upload_parser.add_argument("--content-type", default=None, help="MIME type declared by the uploader")
    upload_parser.add_argument("--chunk-size", type=int, default=None, help="Rows per session")
    upload_parser.add_argument("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port")

    resume_parser = subparsers.add_parser("resume", help="Resume a paused or failed upload")
    resume_parser.add_argument("--batch-id", required=True, help="Upload (batch) ID")
    resume_parser.add_argument("--input", required=True, help="Path to the same CSV file")
    resume_parser.add_argument("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port")

    sessions_parser = subparsers.add_parser("sessions", help="List upload sessions, newest first")
    sessions_parser.add_argument("--batch-id", default=None, help="Only chunks of this upload")
    sessions_parser.add_argument("--limit", type=int, default=50, help="Maximum sessions to list")

    records_parser = subparsers.add_parser("records", help="Browse staged rows of a session")
    records_parser.add_argument("--session-id", required=True)
    records_parser.add_argument("--status", choices=["pending", "valid", "invalid", "corrected", "processed"])
    records_parser.add_argument("--needs-review", action="store_true", help="Only rows flagged for review")
    records_parser.add_argument("--action-type", choices=["insert", "update", "delete", "unknown"])
    records_parser.add_argument("--search", default=None, help="Match vcpn, part number, description or notes")
    records_parser.add_argument("--issue-type", choices=sorted(ISSUE_TYPES))
    records_parser.add_argument("--page", type=int, default=1)
    records_parser.add_argument("--page-size", type=int, default=None)

    edit_parser = subparsers.add_parser("edit", help="Edit one staged row")
    edit_parser.add_argument("--record-id", required=True)
    edit_parser.add_argument("--set", action="append", required=True, metavar="FIELD=VALUE", help="Repeatable")

    process_parser = subparsers.add_parser("process", help="Reconcile staged rows into inventory")
    target = process_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--record-ids", help="Comma-separated row IDs")
    target.add_argument("--session-id", help="Every valid or corrected row of the session")
    process_parser.add_argument("--preview", action="store_true", help="Only label rows insert/update (with --session-id)")

    missing_parser = subparsers.add_parser(
        "mark-missing", help="Flag inventory records a completed upload no longer lists"
    )
    missing_parser.add_argument("--batch-id", required=True, help="Upload (batch) ID")
    missing_parser.add_argument("--show", type=int, default=20, help="Keys to print")

    mass_parser = subparsers.add_parser("mass-correct", help="Apply a bulk correction")
    mass_parser.add_argument("--session-id", required=True)
    mass_parser.add_argument("--type", required=True, choices=sorted(CORRECTIONS))
    mass_parser.add_argument("--record-ids", default=None, help="Comma-separated row IDs (default: whole session)")
    mass_parser.add_argument("--show-notes", type=int, default=20, help="Notes to print")

    progress_parser = subparsers.add_parser("progress", help="Show upload progress")
    which = progress_parser.add_mutually_exclusive_group(required=True)
    which.add_argument("--batch-id")
    which.add_argument("--session-id")

    delete_session_parser = subparsers.add_parser("delete-session", help="Delete a session and its staged rows")
    delete_session_parser.add_argument("--session-id", required=True)

    delete_row_parser = subparsers.add_parser("delete-row", help="Delete one staged row")
    delete_row_parser.add_argument("--record-id", required=True)

    for sub in subparsers.choices.values():
        add_db_arguments(sub)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_FAILED

    setup_logger(level=args.log_level, format_type=args.log_format)

    pool = DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )
    spark = create_spark_session() if args.command in NEEDS_SPARK else None

    try:
        pool.open()
        settings = PipelineSettings.load(args.config)
        pipeline = InventoryImportPipeline(pool, spark=spark, settings=settings)
        return COMMANDS[args.command](pipeline, args)

    except ImportCancelledError as e:
        logger.warning(str(e))
        print(f"\n{e}")
        return EXIT_CANCELLED
    except (InputValidationError, PipelineError) as e:
        logger.error(f"{args.command} failed: {e}", extra={"error_type": type(e).__name__})
        print(f"\nError: {e}")
        return EXIT_INVALID_INPUT
    except Exception as e:
        logger.error(f"Error during {args.command}: {e}", exc_info=True)
        print(f"\nError: {e}")
        return EXIT_FAILED
    finally:
        pool.close()
        if spark is not None:
            spark.stop()


if __name__ == "__main__":
    sys.exit(main())

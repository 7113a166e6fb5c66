"""
Structured JSON logging for the inventory import pipeline

All module loggers are children of the ``inventory_pipeline`` logger, which
owns the single handler. Upload context (batch, session, chunk, row) is
passed through ``extra`` and lands as top-level JSON fields
(python-json-logger) so log lines can be filtered per upload.
"""
import logging
import os
import sys
import time
from typing import Any

from pythonjsonlogger.json import JsonFormatter

PACKAGE_LOGGER = "inventory_pipeline"

# Fields that identify where in an upload a line was written
CONTEXT_FIELDS = ("batch_id", "session_id", "chunk_number", "row_number", "record_id")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s - %(message)s"


class ImportJsonFormatter(JsonFormatter):
    """
    Adds timestamp, level, logger and source location to every entry, and
    renders upload context ids as strings.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["location"] = f"{record.module}:{record.funcName}:{record.lineno}"
        for field in CONTEXT_FIELDS:
            value = log_record.get(field)
            if value is not None and not isinstance(value, (int, str)):
                log_record[field] = str(value)


def _resolve_level(level: str | None) -> int:
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logger(level: str | None = None, format_type: str | None = None) -> logging.Logger:
    """
    Configure the package logger; safe to call again to change level or format.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL; defaults to $LOG_LEVEL
        format_type: "json" or "text"; defaults to $LOG_FORMAT, then json

    Returns:
        The package logger
    """
    log_level = _resolve_level(level)
    format_type = (format_type or os.getenv("LOG_FORMAT", "json")).lower()

    handler = logging.StreamHandler(sys.stdout)
    if format_type == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    else:
        handler.setFormatter(
            ImportJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s", datefmt="%Y-%m-%dT%H:%M:%S%z")
        )

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(log_level)
    package_logger.propagate = False
    return package_logger


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    """
    Logger for a module, configuring the package logger on first use.

    Names outside the package are nested under it so they share its handler.
    """
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        setup_logger()
    if name != PACKAGE_LOGGER and not name.startswith(f"{PACKAGE_LOGGER}."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


class log_operation:
    """
    Log the start and end of a unit of work with its duration.

    Extra keyword fields are attached to both lines. Call ``note`` inside
    the block to add fields to the closing line only.

    Usage:
        with log_operation("Chunk 2/5", logger=logger, session_id=sid) as op:
            ...
            op.note(rows=500)
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields: Any):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.fields = {"operation": operation_name, **extra_fields}
        self.outcome: dict[str, Any] = {}
        self.started = 0.0

    def note(self, **fields: Any) -> None:
        self.outcome.update(fields)

    def __enter__(self) -> "log_operation":
        self.started = time.monotonic()
        self.logger.info(f"{self.operation_name} started", extra=self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        extra = {
            **self.fields,
            **self.outcome,
            "duration_seconds": round(time.monotonic() - self.started, 3),
        }
        if exc_type is None:
            self.logger.info(f"{self.operation_name} finished", extra={**extra, "status": "success"})
        else:
            self.logger.error(
                f"{self.operation_name} failed: {exc_val}",
                extra={**extra, "status": "error", "error_type": exc_type.__name__},
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False

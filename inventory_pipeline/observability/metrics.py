"""
Prometheus metrics for the inventory import pipeline

Counters and histograms covering staging throughput, validation outcomes,
reconciliation results and chunk lifecycle.
"""
import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# STAGING METRICS
# =======================

rows_staged_total = Counter(
    name="inventory_import_rows_staged_total",
    documentation="Rows written to the staging store, by validation status",
    labelnames=["status"],  # status: valid, invalid, corrected
    registry=REGISTRY,
)

row_failures_total = Counter(
    name="inventory_import_row_failures_total",
    documentation="Rows that raised while being normalized, validated or staged",
    labelnames=["stage"],  # stage: staging, reconcile
    registry=REGISTRY,
)

validation_issues_total = Counter(
    name="inventory_import_validation_issues_total",
    documentation="Validation issues attached to staged rows",
    labelnames=["issue_type", "field_name"],
    registry=REGISTRY,
)

# =======================
# SCHEDULER METRICS
# =======================

chunks_total = Counter(
    name="inventory_import_chunks_total",
    documentation="Chunks that reached a resting state",
    labelnames=["status"],  # status: completed, failed, paused
    registry=REGISTRY,
)

batch_duration_seconds = Histogram(
    name="inventory_import_batch_duration_seconds",
    documentation="Time spent on one batch of rows inside a chunk",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

throughput_records_per_second = Gauge(
    name="inventory_import_throughput_records_per_second",
    documentation="Rows per second for the most recently finished chunk",
    registry=REGISTRY,
)

# =======================
# RECONCILIATION METRICS
# =======================

reconciliations_total = Counter(
    name="inventory_import_reconciliations_total",
    documentation="Reconciliation attempts against the inventory store",
    labelnames=["action", "outcome"],  # action: insert, update, delete, skip; outcome: success, failure
    registry=REGISTRY,
)

reconcile_duration_seconds = Histogram(
    name="inventory_import_reconcile_duration_seconds",
    documentation="Latency of a single staging row upsert",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
    registry=REGISTRY,
)

# =======================
# MASS CORRECTION METRICS
# =======================

mass_corrections_total = Counter(
    name="inventory_import_mass_corrections_total",
    documentation="Rows changed by mass correction, by transform",
    labelnames=["correction_type"],
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="inventory_import_errors_total",
    documentation="Errors raised by pipeline components",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Render the registry in Prometheus text format."""
    return generate_latest(REGISTRY)


def start_metrics_server(port: int | None = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: the HTTP server is only needed by long-running CLI runs
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """Increment a counter, applying labels when given."""
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    """Set a gauge value, applying labels when given."""
    if labels:
        gauge.labels(**labels).set(value)
    else:
        gauge.set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    """Observe a histogram value, applying labels when given."""
    if labels:
        histogram.labels(**labels).observe(value)
    else:
        histogram.observe(value)


def record_error(error: BaseException, component: str) -> None:
    """Count an error by exception class and component."""
    increment_counter(errors_total, 1, error_type=type(error).__name__, component=component)


def record_chunk_finished(status: str, processed: int, duration_seconds: float) -> None:
    """
    Record the resting state of a chunk and its throughput.

    Args:
        status: completed, failed or paused
        processed: Rows processed by this run of the chunk
        duration_seconds: Wall time spent on the chunk
    """
    increment_counter(chunks_total, 1, status=status)
    if duration_seconds > 0:
        set_gauge(throughput_records_per_second, processed / duration_seconds)

"""
Prometheus metrics collection for historize

This module provides metrics instrumentation for monitoring entity runs,
record rejections, version transitions and retries.
"""
import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from historize.core.models import RunSummary

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# RUN METRICS
# =======================

runs_total = Counter(
    name="historize_runs_total",
    documentation="Total number of entity runs",
    labelnames=["entity", "status"],  # status: success, noop, dry_run, failed
    registry=REGISTRY,
)

run_duration_seconds = Histogram(
    name="historize_run_duration_seconds",
    documentation="Time spent running one entity in seconds",
    labelnames=["entity"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 600.0],
    registry=REGISTRY,
)

records_processed_total = Counter(
    name="historize_records_processed_total",
    documentation="Total number of source records by outcome",
    labelnames=["entity", "status"],  # status: read, stale, duplicate, unchanged, rejected
    registry=REGISTRY,
)

watermark_timestamp_seconds = Gauge(
    name="historize_watermark_timestamp_seconds",
    documentation="Committed watermark of an entity as unix time",
    labelnames=["entity"],
    registry=REGISTRY,
)

# =======================
# DATA QUALITY METRICS
# =======================

validation_failures_total = Counter(
    name="historize_validation_failures_total",
    documentation="Total number of failed structural checks",
    labelnames=["entity", "rule_type", "field_name"],
    registry=REGISTRY,
)

rejected_records_total = Counter(
    name="historize_rejected_records_total",
    documentation="Total number of records held back for reconciliation",
    labelnames=["entity", "kind"],  # kind: validation, ordering_violation
    registry=REGISTRY,
)

# =======================
# WAREHOUSE METRICS
# =======================

current_state_writes_total = Counter(
    name="historize_current_state_writes_total",
    documentation="Total number of current-state rows written",
    labelnames=["entity", "operation"],  # operation: insert, update
    registry=REGISTRY,
)

version_writes_total = Counter(
    name="historize_version_writes_total",
    documentation="Total number of version transitions written",
    labelnames=["entity", "operation"],  # operation: open, close
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

retries_total = Counter(
    name="historize_retries_total",
    documentation="Total number of retry attempts on persisted-state calls",
    labelnames=["entity", "operation", "status"],  # status: retrying, exhausted
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def start_metrics_server(port: int | None = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: avoids binding a port when metrics are only collected
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if value > 0:
        counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    """Set a gauge metric value"""
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    """Observe a value in a histogram metric"""
    histogram.labels(**labels).observe(value)


# =======================
# RUN-SPECIFIC HELPERS
# =======================

def record_entity_run(summary: RunSummary) -> None:
    """
    Record the metrics of one finished entity run.

    Args:
        summary: Summary of the run
    """
    entity = summary.entity
    increment_counter(runs_total, 1, entity=entity, status=summary.status)
    observe_histogram(run_duration_seconds, summary.duration_seconds, entity=entity)

    increment_counter(records_processed_total, summary.records_read, entity=entity, status="read")
    increment_counter(records_processed_total, summary.stale_records, entity=entity, status="stale")
    increment_counter(records_processed_total, summary.duplicate_records, entity=entity, status="duplicate")
    increment_counter(records_processed_total, summary.unchanged, entity=entity, status="unchanged")
    increment_counter(records_processed_total, summary.rejected, entity=entity, status="rejected")

    for kind, count in summary.rejected_by_kind.items():
        increment_counter(rejected_records_total, count, entity=entity, kind=kind)

    if summary.status == "success":
        increment_counter(current_state_writes_total, summary.inserted, entity=entity, operation="insert")
        increment_counter(current_state_writes_total, summary.updated, entity=entity, operation="update")
        increment_counter(version_writes_total, summary.versions_opened, entity=entity, operation="open")
        increment_counter(version_writes_total, summary.versions_closed, entity=entity, operation="close")

    if summary.watermark_after is not None and summary.status != "dry_run":
        set_gauge(watermark_timestamp_seconds, summary.watermark_after.timestamp(), entity=entity)


def record_validation_failure(entity: str, rule_type: str, field_name: str) -> None:
    """
    Record a failed structural check.

    Args:
        entity: Entity name
        rule_type: Type of check that failed
        field_name: Name of field that failed the check
    """
    increment_counter(validation_failures_total, 1, entity=entity, rule_type=rule_type, field_name=field_name)


def record_retry(entity: str, operation: str, exhausted: bool = False) -> None:
    """Record a retried or finally failed persisted-state call."""
    status = "exhausted" if exhausted else "retrying"
    increment_counter(retries_total, 1, entity=entity, operation=operation, status=status)

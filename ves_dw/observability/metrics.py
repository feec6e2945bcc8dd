"""
Prometheus metrics for the warehouse loaders

Row outcomes, rejections and policy conflicts per table, plus batch
durations, on a private registry.
"""
import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from ves_dw.core.models import LoadSummary

REGISTRY = CollectorRegistry()


# =======================
# LOAD METRICS
# =======================

rows_written_total = Counter(
    name="ves_etl_rows_written_total",
    documentation="Staged rows applied to warehouse tables",
    labelnames=["table_name", "outcome"],  # outcome: inserted, updated, unchanged
    registry=REGISTRY,
)

rows_rejected_total = Counter(
    name="ves_etl_rows_rejected_total",
    documentation="Staged rows skipped, by reason",
    labelnames=["table_name", "reason"],
    registry=REGISTRY,
)

policy_conflicts_total = Counter(
    name="ves_etl_policy_conflicts_total",
    documentation="PRESERVE_IF_SET conflicts resolved in favour of the stored value",
    labelnames=["table_name", "column"],
    registry=REGISTRY,
)

# =======================
# BATCH METRICS
# =======================

batches_processed_total = Counter(
    name="ves_etl_batches_processed_total",
    documentation="Table loads by final status",
    labelnames=["table_name", "status"],  # status: SUCCESS, PARTIAL, FAILED, SKIPPED
    registry=REGISTRY,
)

batch_duration_seconds = Histogram(
    name="ves_etl_batch_duration_seconds",
    documentation="Time spent loading one batch into one table",
    labelnames=["table_name"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 300.0],
    registry=REGISTRY,
)

batch_size = Histogram(
    name="ves_etl_batch_size_records",
    documentation="Staged records per batch",
    labelnames=["table_name"],
    buckets=[10, 100, 500, 1000, 5000, 10000, 50000, 100000],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Prometheus text exposition of the registry"""
    return generate_latest(REGISTRY)


def start_metrics_server(port: int | None = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Imported lazily so importing this module never binds a port
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    counter.labels(**labels).inc(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def record_policy_conflict(table_name: str, column: str) -> None:
    increment_counter(policy_conflicts_total, 1, table_name=table_name, column=column)


def record_load_summary(summary: LoadSummary) -> None:
    """
    Record the row and batch metrics of a finished load.

    Args:
        summary: Finished LoadSummary
    """
    table = summary.table_name
    for outcome in ("inserted", "updated", "unchanged"):
        count = getattr(summary, outcome)
        if count:
            increment_counter(rows_written_total, count, table_name=table, outcome=outcome)

    for reason, count in summary.skipped_reasons.items():
        increment_counter(rows_rejected_total, count, table_name=table, reason=reason)

    increment_counter(batches_processed_total, 1, table_name=table, status=summary.status)
    observe_histogram(batch_size, summary.total, table_name=table)
    observe_histogram(batch_duration_seconds, summary.duration_seconds, table_name=table)


def record_batch_failure(table_name: str) -> None:
    increment_counter(batches_processed_total, 1, table_name=table_name, status="FAILED")

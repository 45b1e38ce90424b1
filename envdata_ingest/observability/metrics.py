"""
Prometheus metrics for the ingestion engine.

This module defines and exports Prometheus metrics for monitoring:
- Scheduler task executions, durations and retries
- Records collected per source category
- Batch writes, bytes written and storage failures
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


# Create a custom registry for this application
metrics_registry = CollectorRegistry()


# ============================================================================
# Scheduler Metrics
# ============================================================================

task_execution_counter = Counter(
    "ingestion_task_executions_total",
    "Total number of ingestion task executions",
    ["category", "status"],  # status: success, failure
    registry=metrics_registry,
)

task_duration = Histogram(
    "ingestion_task_duration_seconds",
    "Ingestion task execution duration in seconds",
    ["category"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600],
    registry=metrics_registry,
)

task_retry_counter = Counter(
    "ingestion_task_retries_total",
    "Total number of task retries scheduled",
    ["category"],
    registry=metrics_registry,
)

task_exhausted_counter = Counter(
    "ingestion_task_retries_exhausted_total",
    "Tasks that failed after exhausting their retries",
    ["category"],
    registry=metrics_registry,
)

scheduled_tasks_gauge = Gauge(
    "ingestion_scheduled_tasks",
    "Number of tasks in the scheduler task table",
    ["status"],
    registry=metrics_registry,
)

# ============================================================================
# Collection Metrics
# ============================================================================

records_collected_counter = Counter(
    "ingestion_records_collected_total",
    "Total number of records collected from sources",
    ["category"],
    registry=metrics_registry,
)

# ============================================================================
# Storage Metrics
# ============================================================================

batches_written_counter = Counter(
    "storage_batches_written_total",
    "Total number of batch blobs written",
    registry=metrics_registry,
)

bytes_written_counter = Counter(
    "storage_bytes_written_total",
    "Bytes written to batch blobs",
    ["kind"],  # kind: raw, compressed
    registry=metrics_registry,
)

storage_error_counter = Counter(
    "storage_errors_total",
    "Storage failures by operation",
    ["operation"],
    registry=metrics_registry,
)

blobs_skipped_counter = Counter(
    "storage_blobs_skipped_total",
    "Blobs skipped on the read path because they were unreadable",
    ["reason"],
    registry=metrics_registry,
)


def get_metrics() -> bytes:
    """Render all metrics in the Prometheus exposition format."""
    return generate_latest(metrics_registry)


def get_content_type() -> str:
    """Content type of :func:`get_metrics` output."""
    return CONTENT_TYPE_LATEST

"""
Observability for the ingestion engine: Prometheus metrics and structured logging.
"""

from envdata_ingest.observability.metrics import (
    batches_written_counter,
    get_metrics,
    metrics_registry,
    records_collected_counter,
    task_execution_counter,
)

from envdata_ingest.observability.logging import (
    get_logger,
    log_context,
    setup_logging,
)

__all__ = [
    # Metrics
    "metrics_registry",
    "task_execution_counter",
    "records_collected_counter",
    "batches_written_counter",
    "get_metrics",
    # Logging
    "setup_logging",
    "get_logger",
    "log_context",
]

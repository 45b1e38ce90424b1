"""
Ingestion layer of the engine.

This package provides the source registry, the collector contract and
registry, and the scheduler that drives collection.
"""

# Base classes, errors and registry
from envdata_ingest.ingestion.base import (
    CollectorError,
    CollectorRegistry,
    ConfigurationError,
    IngestionError,
    NotFoundError,
)

# Interface contracts (Protocols)
from envdata_ingest.ingestion.interfaces import DataCollector

# Concrete implementations
from envdata_ingest.ingestion.health import SourceHealthTracker
from envdata_ingest.ingestion.scheduler import (
    IngestionScheduler,
    RetryPolicy,
    frequency_offset,
    max_retries_for_frequency,
)
from envdata_ingest.ingestion.sources import SourceRegistry

__all__ = [
    # Errors
    "IngestionError",
    "ConfigurationError",
    "CollectorError",
    "NotFoundError",
    # Interface contracts
    "DataCollector",
    # Implementations
    "CollectorRegistry",
    "SourceRegistry",
    "SourceHealthTracker",
    "IngestionScheduler",
    "RetryPolicy",
    "frequency_offset",
    "max_retries_for_frequency",
]

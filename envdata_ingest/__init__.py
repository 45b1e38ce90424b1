"""
Environmental data ingestion engine.

Pulls observational data from many providers on per-source schedules and
stores it as compressed, checksummed, indexed batches.
"""

from envdata_ingest.config import IngestionSettings
from envdata_ingest.coordinator import IngestionCoordinator, build_coordinator

__version__ = "0.1.0"

__all__ = [
    "IngestionSettings",
    "IngestionCoordinator",
    "build_coordinator",
]

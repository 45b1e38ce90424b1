"""
Collector implementations.
"""

from envdata_ingest.ingestion.collectors.http_json import HttpJsonCollector

__all__ = ["HttpJsonCollector"]

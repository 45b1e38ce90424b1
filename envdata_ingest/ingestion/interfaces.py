"""
Ingestion layer interface contracts.

This module defines the Protocol that every provider adapter implements.
The core only ever talks to collectors through this contract.
"""

from typing import List, Protocol, runtime_checkable

from envdata_ingest.types import DataSource, RawDataRecord


@runtime_checkable
class DataCollector(Protocol):
    """Interface for collecting data from one category of sources."""

    async def collect_data(self, source: DataSource) -> List[RawDataRecord]:
        """
        Collect new records from a source.

        Must be safe to call repeatedly. Duplicate records across calls are
        tolerated by the storage engine.

        Args:
            source: The source to collect from

        Returns:
            Records collected during this call

        Raises:
            CollectorError: On network or parse failure
        """
        ...

    async def validate_connection(self, source: DataSource) -> bool:
        """
        Check whether the provider endpoint is reachable.

        Args:
            source: The source to check

        Returns:
            True if the provider answered successfully
        """
        ...

    async def get_available_parameters(self, source: DataSource) -> List[str]:
        """
        List the parameter names the provider can deliver for a source.

        Args:
            source: The source to inspect

        Returns:
            Parameter names
        """
        ...

    async def estimate_data_volume(self, source: DataSource) -> int:
        """
        Estimate bytes produced per day. A planning hint, not a guarantee.

        Args:
            source: The source to estimate

        Returns:
            Estimated bytes per day
        """
        ...

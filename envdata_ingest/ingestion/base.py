"""
Collector registry and ingestion error types.

The registry maps each source category to exactly one collector instance.
Instances are constructed once by the caller and shared read-only afterwards.
"""

import logging
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from envdata_ingest.ingestion.interfaces import DataCollector
from envdata_ingest.types import DataSource, DataSourceCategory

logger = logging.getLogger(__name__)


# ============================================================================
# Exceptions
# ============================================================================


class IngestionError(Exception):
    """Base exception for the ingestion layer."""

    pass


class ConfigurationError(IngestionError):
    """Raised when the engine is wired inconsistently, e.g. missing collectors."""

    pass


class CollectorError(IngestionError):
    """Raised by collectors on network or parse failure."""

    def __init__(
        self,
        message: str,
        source_id: Optional[UUID] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.source_id = source_id
        self.recoverable = recoverable


class NotFoundError(IngestionError):
    """Raised when a source id is unknown."""

    pass


# ============================================================================
# Registry
# ============================================================================


class CollectorRegistry:
    """
    Registry resolving a collector by source category.

    Unlike a global plugin registry, each engine owns its own instance so
    tests and multiple engines in one process never share state.
    """

    def __init__(self, collectors: Optional[Dict[DataSourceCategory, DataCollector]] = None):
        self._collectors: Dict[DataSourceCategory, DataCollector] = {}
        for category, collector in (collectors or {}).items():
            self.register(category, collector)

    def register(self, category: DataSourceCategory, collector: DataCollector) -> None:
        """
        Register the collector serving a category.

        Args:
            category: Source category
            collector: Collector instance

        Raises:
            ConfigurationError: If the object does not satisfy the collector
                contract or the category already has a collector
        """
        if not isinstance(collector, DataCollector):
            raise ConfigurationError(
                f"{type(collector).__name__} does not implement the DataCollector interface"
            )

        if category in self._collectors:
            raise ConfigurationError(
                f"Collector for category '{category.value}' is already registered"
            )

        self._collectors[category] = collector
        logger.info(
            f"Registered collector {type(collector).__name__} for {category.value}"
        )

    def find(self, category: DataSourceCategory) -> Optional[DataCollector]:
        """Return the collector for a category, or None."""
        return self._collectors.get(category)

    def get(self, category: DataSourceCategory) -> DataCollector:
        """
        Return the collector for a category.

        Raises:
            ConfigurationError: If no collector is registered for the category
        """
        collector = self._collectors.get(category)
        if collector is None:
            raise ConfigurationError(
                f"No collector registered for category '{category.value}'"
            )
        return collector

    def categories(self) -> List[DataSourceCategory]:
        """Categories that have a registered collector."""
        return list(self._collectors.keys())

    def validate_sources(self, sources: Iterable[DataSource]) -> None:
        """
        Fail loudly if any source has no collector for its category.

        Raises:
            ConfigurationError: Listing every uncovered category
        """
        missing: Dict[DataSourceCategory, List[str]] = {}
        for source in sources:
            if source.category not in self._collectors:
                missing.setdefault(source.category, []).append(source.name)

        if missing:
            details = "; ".join(
                f"{category.value}: {', '.join(sorted(names))}"
                for category, names in sorted(missing.items(), key=lambda kv: kv[0].value)
            )
            raise ConfigurationError(f"No collector registered for: {details}")

    def __contains__(self, category: DataSourceCategory) -> bool:
        return category in self._collectors

    def __len__(self) -> int:
        return len(self._collectors)

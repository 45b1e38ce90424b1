"""
In-memory catalog of known data sources.

The registry is the authoritative set of sources for one engine. It is
read on every scheduler tick and written only at registration and on
status changes, so it is guarded by a reader-writer lock.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from envdata_ingest.ingestion.base import NotFoundError
from envdata_ingest.ingestion.locks import ReadWriteLock
from envdata_ingest.types import DataSource, IngestionStatus, ensure_utc

logger = logging.getLogger(__name__)


class SourceRegistry:
    """
    Registry of DataSources keyed by id.

    Stored sources are never handed out directly; callers receive copies so
    mutations always go through the registry.
    """

    def __init__(self):
        self._sources: Dict[UUID, DataSource] = {}
        self._lock = ReadWriteLock()

    async def register(self, source: DataSource) -> DataSource:
        """
        Insert or replace a source by id.

        Args:
            source: The source to register

        Returns:
            A copy of the stored source
        """
        stored = source.model_copy(deep=True)
        async with self._lock.write():
            replaced = stored.id in self._sources
            self._sources[stored.id] = stored

        action = "Updated" if replaced else "Registered"
        logger.info(
            f"{action} source {stored.name} ({stored.id}) "
            f"category={stored.category.value} status={stored.status.value}"
        )
        return stored.model_copy(deep=True)

    async def get(self, source_id: UUID) -> Optional[DataSource]:
        """Return a copy of the source, or None if unknown."""
        async with self._lock.read():
            source = self._sources.get(source_id)
            return source.model_copy(deep=True) if source else None

    async def list_active(self) -> List[DataSource]:
        """
        Active sources, highest priority first.

        Ties are broken by name so the order is deterministic.
        """
        async with self._lock.read():
            active = [s.model_copy(deep=True) for s in self._sources.values() if s.is_active]

        active.sort(key=lambda s: (-s.priority, s.name))
        return active

    async def list_all(self) -> List[DataSource]:
        """All sources, highest priority first."""
        async with self._lock.read():
            sources = [s.model_copy(deep=True) for s in self._sources.values()]

        sources.sort(key=lambda s: (-s.priority, s.name))
        return sources

    async def update_status(self, source_id: UUID, status: IngestionStatus) -> DataSource:
        """
        Change the status of a source.

        Raises:
            NotFoundError: If the source is unknown
        """
        async with self._lock.write():
            source = self._sources.get(source_id)
            if source is None:
                raise NotFoundError(f"Data source {source_id} not found")
            previous = source.status
            source.status = status

        if previous != status:
            logger.info(
                f"Source {source.name} status changed {previous.value} -> {status.value}"
            )
        return source.model_copy(deep=True)

    async def mark_ingested(self, source_id: UUID, when: datetime) -> None:
        """Record the time of the latest successful ingestion."""
        async with self._lock.write():
            source = self._sources.get(source_id)
            if source is None:
                raise NotFoundError(f"Data source {source_id} not found")
            source.last_ingestion = ensure_utc(when)

    async def count_by_status(self) -> Dict[IngestionStatus, int]:
        """Number of sources in each status."""
        async with self._lock.read():
            return dict(Counter(s.status for s in self._sources.values()))

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: UUID) -> bool:
        return source_id in self._sources

"""
Ingestion coordinator.

Thin composition layer over the source registry, collector registry,
scheduler and storage engine. This is the surface external callers use to
register sources, start and stop background ingestion, trigger manual
collections and query stored data.
"""

import logging
import time
from datetime import datetime
from typing import List, Mapping, Optional, Sequence
from uuid import UUID

from envdata_ingest.config import IngestionSettings
from envdata_ingest.ingestion.base import CollectorRegistry, NotFoundError
from envdata_ingest.ingestion.catalog import default_catalog
from envdata_ingest.ingestion.health import SourceHealthTracker
from envdata_ingest.ingestion.interfaces import DataCollector
from envdata_ingest.ingestion.scheduler import IngestionScheduler
from envdata_ingest.ingestion.sources import SourceRegistry
from envdata_ingest.observability.logging import setup_logging
from envdata_ingest.storage.engine import DataStorage
from envdata_ingest.storage.interfaces import MetadataIndex
from envdata_ingest.storage.memory import InMemoryMetadataIndex
from envdata_ingest.storage.postgres import PostgreSQLConnectionPool, PostgreSQLMetadataIndex
from envdata_ingest.types import (
    DataSource,
    DataSourceCategory,
    RawDataRecord,
    SchedulerStats,
    SourceHealth,
    StorageStats,
    TaskResult,
)

logger = logging.getLogger(__name__)


class IngestionCoordinator:
    """
    Entry point of the ingestion engine.

    Owns the shared structures (source map, task table, storage) and passes
    them to its collaborators by reference.

    Example:
        ```python
        coordinator = await build_coordinator(settings, collectors)
        await coordinator.initialize_sources()
        await coordinator.start_ingestion()
        ...
        await coordinator.close()
        ```
    """

    def __init__(
        self,
        sources: SourceRegistry,
        collectors: CollectorRegistry,
        storage: DataStorage,
        scheduler: IngestionScheduler,
        db_pool: Optional[PostgreSQLConnectionPool] = None,
    ):
        self.sources = sources
        self.collectors = collectors
        self.storage = storage
        self.scheduler = scheduler
        self.db_pool = db_pool

    async def initialize(self) -> None:
        """Prepare storage directories and the metadata index."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Stop ingestion and release storage resources."""
        await self.stop_ingestion()
        await self.storage.close()
        if self.db_pool:
            await self.db_pool.close()
        logger.info("Ingestion coordinator closed")

    async def __aenter__(self) -> "IngestionCoordinator":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    # ========================================================================
    # Sources
    # ========================================================================

    async def register_source(self, source: DataSource) -> DataSource:
        """
        Register or update a source.

        While ingestion runs, an active source is scheduled right away and a
        source that is no longer active is unscheduled.

        Raises:
            ConfigurationError: If ingestion is running and no collector
                serves the category of an active source
        """
        if self.is_running and source.is_active:
            self.collectors.validate_sources([source])

        stored = await self.sources.register(source)

        if self.is_running:
            if stored.is_active:
                await self.scheduler.add_source(stored)
            else:
                await self.scheduler.remove_source(stored.id)
        return stored

    async def initialize_sources(
        self, catalog: Optional[Sequence[DataSource]] = None
    ) -> int:
        """
        Bulk-register sources, the built-in catalog by default.

        Returns:
            Number of sources registered
        """
        catalog = default_catalog() if catalog is None else catalog
        for source in catalog:
            await self.register_source(source)

        logger.info(f"Initialized {len(catalog)} data sources")
        return len(catalog)

    async def get_source(self, source_id: UUID) -> DataSource:
        """
        Raises:
            NotFoundError: If the source is unknown
        """
        source = await self.sources.get(source_id)
        if source is None:
            raise NotFoundError(f"Data source {source_id} not found")
        return source

    async def list_sources(self, active_only: bool = False) -> List[DataSource]:
        if active_only:
            return await self.sources.list_active()
        return await self.sources.list_all()

    # ========================================================================
    # Ingestion
    # ========================================================================

    async def start_ingestion(self) -> int:
        """
        Validate collectors, build one task per active source and start the loop.

        Returns:
            Number of active sources scheduled

        Raises:
            ConfigurationError: If any active source has no collector
        """
        if self.is_running:
            logger.warning("Ingestion already running")
            return len(await self.scheduler.list_tasks())

        active = await self.sources.list_active()
        self.collectors.validate_sources(active)

        await self.scheduler.initialize_tasks(active)
        await self.scheduler.start()

        logger.info(f"Ingestion started for {len(active)} active sources")
        return len(active)

    async def stop_ingestion(self) -> None:
        if self.is_running:
            await self.scheduler.stop()
            logger.info("Ingestion stopped")

    async def collect_from_source(self, source_id: UUID) -> TaskResult:
        """
        Collect from one source now, outside the schedule.

        Waits for a scheduled execution of the same source to finish first.
        The task schedule is left untouched.

        Returns:
            Result carrying the collected and stored records

        Raises:
            NotFoundError: If the source is unknown
            ConfigurationError: If no collector serves the source category
            CollectorError: If the collector fails
            StorageError: If the records cannot be stored
        """
        source = await self.get_source(source_id)
        self.collectors.get(source.category)

        logger.info(f"Manual collection from {source.name}")
        started = time.monotonic()

        try:
            records, files = await self.scheduler.run_exclusive(
                source.id, lambda: self.scheduler.collect_once(source)
            )
        except Exception as e:
            await self.scheduler.health.record_failure(source.id, str(e))
            raise

        elapsed = time.monotonic() - started
        await self.sources.mark_ingested(source.id, self.scheduler.clock())
        await self.scheduler.health.record_success(source.id)

        task = await self.scheduler.get_task(source.id)
        return TaskResult(
            task_id=task.id if task else None,
            source_id=source.id,
            success=True,
            records_collected=len(records),
            data_volume=sum(f.file_size for f in files),
            execution_seconds=elapsed,
            records=records,
        )

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_raw_data(
        self,
        source_id: Optional[UUID] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
        parameters: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[RawDataRecord]:
        return await self.storage.get_raw_data(
            source_id=source_id,
            time_start=time_start,
            time_end=time_end,
            parameters=parameters,
            limit=limit,
        )

    async def get_storage_stats(self) -> StorageStats:
        return await self.storage.get_storage_stats()

    async def get_scheduler_stats(self) -> SchedulerStats:
        return await self.scheduler.get_stats()

    async def get_source_health(self, source_id: UUID) -> SourceHealth:
        """
        Raises:
            NotFoundError: If the source is unknown
        """
        await self.get_source(source_id)
        return await self.scheduler.health.get_health(source_id)


# ============================================================================
# Factory
# ============================================================================


async def build_index(
    settings: IngestionSettings,
) -> tuple[MetadataIndex, Optional[PostgreSQLConnectionPool]]:
    """Create the metadata index selected by the settings."""
    if settings.index_backend == "memory":
        return InMemoryMetadataIndex(), None

    pool = PostgreSQLConnectionPool(
        host=settings.postgres_host,
        port=settings.postgres_port,
        database=settings.postgres_db,
        user=settings.postgres_user,
        password=settings.postgres_password,
        min_size=settings.postgres_min_pool,
        max_size=settings.postgres_max_pool,
        dsn=settings.postgres_dsn,
    )
    await pool.connect()
    return PostgreSQLMetadataIndex(pool.pool), pool


async def build_coordinator(
    settings: IngestionSettings,
    collectors: Mapping[DataSourceCategory, DataCollector],
    configure_logging: bool = True,
) -> IngestionCoordinator:
    """
    Wire a ready-to-use coordinator from settings.

    Configures logging, connects the metadata index and creates the
    storage layout.

    Args:
        settings: Engine settings
        collectors: Collector instance per source category
        configure_logging: Apply the logging settings to the root logger

    Raises:
        ConfigurationError: If a collector does not satisfy the interface
        ConnectionError: If the PostgreSQL index cannot be reached
    """
    if configure_logging:
        setup_logging(
            level=settings.log_level,
            log_file=settings.log_file,
            json_format=settings.log_json,
        )

    collector_registry = CollectorRegistry(dict(collectors))
    index, pool = await build_index(settings)

    storage = DataStorage(
        base_path=settings.storage_path,
        index=index,
        compression_level=settings.compression_level,
        default_limit=settings.query_limit,
    )
    sources = SourceRegistry()
    scheduler = IngestionScheduler(
        sources=sources,
        collectors=collector_registry,
        storage=storage,
        health=SourceHealthTracker(failure_threshold=settings.health_failure_threshold),
        retry_policy=settings.retry_policy,
        max_concurrent=settings.max_concurrent_tasks,
        tick_interval=settings.tick_interval_seconds,
        task_timeout=settings.task_timeout_seconds,
        validate_connections=settings.validate_connections,
    )

    coordinator = IngestionCoordinator(
        sources=sources,
        collectors=collector_registry,
        storage=storage,
        scheduler=scheduler,
        db_pool=pool,
    )
    await coordinator.initialize()
    return coordinator

"""
PostgreSQL metadata index.

This module provides an asyncpg-based implementation of the MetadataIndex
interface, backing the ``data_file_metadata`` and ``data_record_index``
tables.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence
from uuid import UUID

import asyncpg
from asyncpg import Pool

from envdata_ingest.storage.interfaces import (
    ConnectionError,
    IntegrityError,
    MetadataIndex,
    StorageError,
    compression_ratio,
)
from envdata_ingest.types import DataFileMetadata, RawDataRecord, StorageStats

logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS data_file_metadata (
        file_id UUID PRIMARY KEY,
        source_id UUID NOT NULL,
        file_path TEXT NOT NULL UNIQUE,
        file_size BIGINT NOT NULL,
        compressed_size BIGINT NOT NULL,
        record_count INTEGER NOT NULL,
        checksum TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        time_range_start TIMESTAMPTZ NOT NULL,
        time_range_end TIMESTAMPTZ NOT NULL,
        parameters TEXT[] NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_data_file_metadata_source_time
        ON data_file_metadata (source_id, time_range_start, time_range_end)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_data_file_metadata_time
        ON data_file_metadata (time_range_start, time_range_end)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_data_file_metadata_parameters
        ON data_file_metadata USING GIN (parameters)
    """,
    """
    CREATE TABLE IF NOT EXISTS data_record_index (
        record_id UUID PRIMARY KEY,
        source_id UUID NOT NULL,
        timestamp TIMESTAMPTZ NOT NULL,
        file_path TEXT NOT NULL,
        parameters TEXT[] NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_data_record_index_source_time
        ON data_record_index (source_id, timestamp)
    """,
]


# ============================================================================
# Connection Pool Management
# ============================================================================


class PostgreSQLConnectionPool:
    """
    Manages PostgreSQL connection pool lifecycle.

    A single shared pool is used by the metadata index; asyncpg pools are
    safe for concurrent use by many coroutines.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "envdata",
        user: str = "envdata",
        password: str = "envdata",
        min_size: int = 2,
        max_size: int = 10,
        dsn: Optional[str] = None,
    ):
        """
        Initialize connection pool configuration.

        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Database user
            password: Database password
            min_size: Minimum pool size
            max_size: Maximum pool size
            dsn: Optional connection string, overrides the individual fields
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_size = min_size
        self.max_size = max_size
        self.dsn = dsn
        self._pool: Optional[Pool] = None

    async def connect(self) -> Pool:
        """
        Create and return a connection pool.

        Raises:
            ConnectionError: If connection fails
        """
        if self._pool is not None:
            return self._pool

        try:
            if self.dsn:
                self._pool = await asyncpg.create_pool(
                    dsn=self.dsn,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=60,
                )
            else:
                self._pool = await asyncpg.create_pool(
                    host=self.host,
                    port=self.port,
                    database=self.database,
                    user=self.user,
                    password=self.password,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=60,
                )
            logger.info(
                f"PostgreSQL connection pool created: {self.host}:{self.port}/{self.database}"
            )
            return self._pool
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to create connection pool: {e}")
            raise ConnectionError(f"Database connection failed: {e}") from e

    async def close(self):
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL connection pool closed")

    @property
    def pool(self) -> Optional[Pool]:
        """Get the current pool instance."""
        return self._pool


# ============================================================================
# Helper Functions
# ============================================================================


def _row_to_file_metadata(row: asyncpg.Record) -> DataFileMetadata:
    """Convert database row to DataFileMetadata object."""
    return DataFileMetadata(
        file_id=row["file_id"],
        source_id=row["source_id"],
        file_path=row["file_path"],
        file_size=row["file_size"],
        compressed_size=row["compressed_size"],
        record_count=row["record_count"],
        checksum=row["checksum"],
        created_at=row["created_at"],
        time_range_start=row["time_range_start"],
        time_range_end=row["time_range_end"],
        parameters=list(row["parameters"] or []),
    )


def build_find_files_query(
    source_id: Optional[UUID] = None,
    time_start: Optional[datetime] = None,
    time_end: Optional[datetime] = None,
    parameters: Optional[List[str]] = None,
) -> tuple[str, List[Any]]:
    """
    Build the candidate-file query and its positional arguments.

    Returns:
        Tuple of (SQL text, argument list)
    """
    query = "SELECT * FROM data_file_metadata WHERE 1=1"
    args: List[Any] = []

    if source_id is not None:
        args.append(source_id)
        query += f" AND source_id = ${len(args)}"

    if time_start is not None:
        args.append(time_start)
        query += f" AND time_range_end >= ${len(args)}"

    if time_end is not None:
        args.append(time_end)
        query += f" AND time_range_start <= ${len(args)}"

    if parameters:
        args.append(list(parameters))
        query += f" AND parameters && ${len(args)}::text[]"

    query += " ORDER BY time_range_start, created_at"
    return query, args


# ============================================================================
# Metadata Index
# ============================================================================


class PostgreSQLMetadataIndex(MetadataIndex):
    """PostgreSQL implementation of MetadataIndex."""

    def __init__(self, pool: Pool):
        """
        Initialize index with a connection pool.

        Args:
            pool: asyncpg connection pool
        """
        self.pool = pool

    async def initialize(self) -> None:
        """Create the index tables if they do not exist."""
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    for statement in SCHEMA_STATEMENTS:
                        await conn.execute(statement)
            logger.info("PostgreSQL metadata index schema ready")
        except asyncpg.PostgresError as e:
            logger.error(f"Failed to create index schema: {e}")
            raise StorageError(f"Failed to create index schema: {e}") from e

    async def record_batch(
        self, metadata: DataFileMetadata, records: Sequence[RawDataRecord]
    ) -> None:
        file_query = """
            INSERT INTO data_file_metadata (
                file_id, source_id, file_path, file_size, compressed_size,
                record_count, checksum, created_at, time_range_start,
                time_range_end, parameters
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
        """
        record_query = """
            INSERT INTO data_record_index (
                record_id, source_id, timestamp, file_path, parameters
            ) VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (record_id) DO NOTHING
        """
        record_rows = [
            (
                record.id,
                record.source_id,
                record.timestamp,
                metadata.file_path,
                record.parameter_names(),
            )
            for record in records
        ]

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        file_query,
                        metadata.file_id,
                        metadata.source_id,
                        metadata.file_path,
                        metadata.file_size,
                        metadata.compressed_size,
                        metadata.record_count,
                        metadata.checksum,
                        metadata.created_at,
                        metadata.time_range_start,
                        metadata.time_range_end,
                        metadata.parameters,
                    )
                    if record_rows:
                        await conn.executemany(record_query, record_rows)
        except asyncpg.UniqueViolationError as e:
            logger.error(f"Duplicate file metadata for {metadata.file_path}: {e}")
            raise IntegrityError(f"File already indexed: {metadata.file_path}") from e
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to index batch {metadata.file_path}: {e}")
            raise StorageError(f"Failed to index batch: {e}") from e

    async def find_files(
        self,
        source_id: Optional[UUID] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
        parameters: Optional[List[str]] = None,
    ) -> List[DataFileMetadata]:
        query, args = build_find_files_query(source_id, time_start, time_end, parameters)
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to query file metadata: {e}")
            raise StorageError(f"Failed to query file metadata: {e}") from e

        return [_row_to_file_metadata(row) for row in rows]

    async def get_file(self, file_id: UUID) -> Optional[DataFileMetadata]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM data_file_metadata WHERE file_id = $1", file_id
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise StorageError(f"Failed to get file metadata: {e}") from e

        return _row_to_file_metadata(row) if row else None

    async def lookup_record(self, record_id: UUID) -> Optional[str]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(
                    "SELECT file_path FROM data_record_index WHERE record_id = $1",
                    record_id,
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise StorageError(f"Failed to look up record: {e}") from e

    async def get_stats(self) -> StorageStats:
        query = """
            SELECT
                COUNT(*) AS files_count,
                COALESCE(SUM(record_count), 0) AS total_records,
                COALESCE(SUM(file_size), 0) AS total_size,
                COALESCE(SUM(compressed_size), 0) AS compressed_size,
                MIN(time_range_start) AS oldest,
                MAX(time_range_end) AS newest,
                COUNT(DISTINCT source_id) AS sources_count
            FROM data_file_metadata
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query)
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to compute storage stats: {e}")
            raise StorageError(f"Failed to compute storage stats: {e}") from e

        total_size = int(row["total_size"])
        compressed_size = int(row["compressed_size"])

        return StorageStats(
            total_records=int(row["total_records"]),
            total_size_bytes=total_size,
            compressed_size_bytes=compressed_size,
            compression_ratio=compression_ratio(total_size, compressed_size),
            oldest_record=row["oldest"],
            newest_record=row["newest"],
            sources_count=row["sources_count"],
            files_count=row["files_count"],
        )

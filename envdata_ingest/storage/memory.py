"""
In-memory metadata index.

Suitable for single-process deployments, local development and tests.
The index is lost when the process exits; the blobs on disk are not.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from envdata_ingest.storage.interfaces import MetadataIndex, compression_ratio
from envdata_ingest.types import DataFileMetadata, RawDataRecord, StorageStats

logger = logging.getLogger(__name__)


class InMemoryMetadataIndex(MetadataIndex):
    """Dictionary-backed implementation of MetadataIndex."""

    def __init__(self):
        self._files: Dict[UUID, DataFileMetadata] = {}
        self._records: Dict[UUID, str] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.info("In-memory metadata index ready")

    async def record_batch(
        self, metadata: DataFileMetadata, records: Sequence[RawDataRecord]
    ) -> None:
        async with self._lock:
            self._files[metadata.file_id] = metadata
            for record in records:
                self._records.setdefault(record.id, metadata.file_path)

    async def find_files(
        self,
        source_id: Optional[UUID] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
        parameters: Optional[List[str]] = None,
    ) -> List[DataFileMetadata]:
        async with self._lock:
            files = list(self._files.values())

        if source_id is not None:
            files = [f for f in files if f.source_id == source_id]

        files = [f for f in files if f.overlaps(time_start, time_end)]

        if parameters:
            wanted = set(parameters)
            files = [f for f in files if wanted.intersection(f.parameters)]

        files.sort(key=lambda f: (f.time_range_start, f.created_at))
        return files

    async def get_file(self, file_id: UUID) -> Optional[DataFileMetadata]:
        async with self._lock:
            return self._files.get(file_id)

    async def lookup_record(self, record_id: UUID) -> Optional[str]:
        async with self._lock:
            return self._records.get(record_id)

    async def get_stats(self) -> StorageStats:
        async with self._lock:
            files = list(self._files.values())

        if not files:
            return StorageStats()

        total_size = sum(f.file_size for f in files)
        compressed_size = sum(f.compressed_size for f in files)

        return StorageStats(
            total_records=sum(f.record_count for f in files),
            total_size_bytes=total_size,
            compressed_size_bytes=compressed_size,
            compression_ratio=compression_ratio(total_size, compressed_size),
            oldest_record=min(f.time_range_start for f in files),
            newest_record=max(f.time_range_end for f in files),
            sources_count=len({f.source_id for f in files}),
            files_count=len(files),
        )

"""
Batch storage engine for raw records.

Records are grouped by source and UTC hour, written as compressed,
checksummed blobs under ``raw/{year}/{month}/{day}/{hour}/{batch-id}.blob``
and indexed in a MetadataIndex. Range and parameter queries consult the
index first and only open blobs whose metadata can contain matches.

Writes are append-only: a blob path is never reused and an index row is
only written after its blob exists. Corrections are new batches.
"""

import logging
import zlib
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID, uuid4

import aiofiles
import aiofiles.os

from envdata_ingest.observability.metrics import (
    batches_written_counter,
    blobs_skipped_counter,
    bytes_written_counter,
    storage_error_counter,
)
from envdata_ingest.storage import codec
from envdata_ingest.storage.interfaces import (
    ChecksumMismatchError,
    MetadataIndex,
    StorageError,
)
from envdata_ingest.types import (
    DataFileMetadata,
    RawDataRecord,
    StorageStats,
    ensure_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 1000

STORAGE_SUBDIRECTORIES = ("raw", "temp")

GroupKey = Tuple[UUID, datetime]


def hour_bucket(timestamp: datetime) -> datetime:
    """Truncate a timestamp to the start of its UTC hour."""
    return ensure_utc(timestamp).replace(minute=0, second=0, microsecond=0)


def group_records(records: Sequence[RawDataRecord]) -> Dict[GroupKey, List[RawDataRecord]]:
    """
    Group records by (source_id, UTC hour bucket).

    Each group is sorted by observation timestamp, then record id.
    """
    groups: Dict[GroupKey, List[RawDataRecord]] = defaultdict(list)
    for record in records:
        groups[(record.source_id, hour_bucket(record.timestamp))].append(record)

    for group in groups.values():
        group.sort(key=lambda r: (r.timestamp, str(r.id)))
    return dict(groups)


def batch_file_path(bucket: datetime, batch_id: UUID) -> str:
    """Relative blob path for a batch written in ``bucket``."""
    return (
        f"raw/{bucket.year:04d}/{bucket.month:02d}/{bucket.day:02d}/"
        f"{bucket.hour:02d}/{batch_id.hex}.blob"
    )


def record_matches(
    record: RawDataRecord,
    source_id: Optional[UUID] = None,
    time_start: Optional[datetime] = None,
    time_end: Optional[datetime] = None,
    parameters: Optional[List[str]] = None,
) -> bool:
    """Exact per-record filter. Time bounds are inclusive."""
    if source_id is not None and record.source_id != source_id:
        return False
    if time_start is not None and record.timestamp < time_start:
        return False
    if time_end is not None and record.timestamp > time_end:
        return False
    if parameters and not any(p in record.metadata.parameters for p in parameters):
        return False
    return True


class DataStorage:
    """
    Storage engine for raw data records.

    Args:
        base_path: Root directory for blobs
        index: Metadata index backend
        compression_level: gzip level, 1 (fast) to 9 (small)
        default_limit: Result cap applied when a query passes no limit
    """

    def __init__(
        self,
        base_path: Union[str, Path],
        index: MetadataIndex,
        compression_level: int = codec.DEFAULT_COMPRESSION_LEVEL,
        default_limit: int = DEFAULT_QUERY_LIMIT,
    ):
        if not 1 <= compression_level <= 9:
            raise ValueError(f"compression_level must be 1-9, got {compression_level}")

        self.base_path = Path(base_path)
        self.index = index
        self.compression_level = compression_level
        self.default_limit = default_limit

    async def initialize(self) -> None:
        """Create the directory layout and the index schema."""
        try:
            for subdir in STORAGE_SUBDIRECTORIES:
                await aiofiles.os.makedirs(self.base_path / subdir, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create storage directory {self.base_path}: {e}") from e

        await self.index.initialize()
        logger.info(f"Data storage initialized at {self.base_path}")

    async def close(self) -> None:
        await self.index.close()

    # ========================================================================
    # Write Path
    # ========================================================================

    async def store_batch(self, records: Sequence[RawDataRecord]) -> List[DataFileMetadata]:
        """
        Store records as one blob per (source, hour) group.

        Each group is its own atomic unit: its index rows are committed only
        after its blob is written. Groups are written in order and the first
        failure stops the call; groups written before it stay committed.

        Args:
            records: Records to store

        Returns:
            Metadata of every blob written

        Raises:
            StorageError: If a group could not be serialized, written or indexed
        """
        if not records:
            return []

        written: List[DataFileMetadata] = []
        for (source_id, bucket), group in group_records(records).items():
            written.append(await self._write_group(source_id, bucket, group))

        logger.info(
            f"Stored {len(records)} records in {len(written)} batch file(s)"
        )
        return written

    async def _write_group(
        self, source_id: UUID, bucket: datetime, records: List[RawDataRecord]
    ) -> DataFileMetadata:
        batch_id = uuid4()
        file_path = batch_file_path(bucket, batch_id)

        try:
            serialized, compressed, digest = codec.encode_batch(records, self.compression_level)
        except (ValueError, TypeError, zlib.error) as e:
            storage_error_counter.labels(operation="serialize").inc()
            raise StorageError(f"Failed to serialize batch for source {source_id}: {e}") from e

        await self._write_blob(file_path, compressed)

        parameters = sorted({p for r in records for p in r.metadata.parameters})
        metadata = DataFileMetadata(
            file_id=batch_id,
            source_id=source_id,
            file_path=file_path,
            file_size=len(serialized),
            compressed_size=len(compressed),
            record_count=len(records),
            checksum=digest,
            created_at=utc_now(),
            time_range_start=records[0].timestamp,
            time_range_end=records[-1].timestamp,
            parameters=parameters,
        )

        try:
            await self.index.record_batch(metadata, records)
        except StorageError:
            storage_error_counter.labels(operation="index").inc()
            logger.error(f"Blob {file_path} written but not indexed; left as orphan")
            raise

        batches_written_counter.inc()
        bytes_written_counter.labels(kind="raw").inc(len(serialized))
        bytes_written_counter.labels(kind="compressed").inc(len(compressed))

        logger.debug(
            f"Wrote {len(records)} records to {file_path} "
            f"({len(serialized)} -> {len(compressed)} bytes)"
        )
        return metadata

    async def _write_blob(self, file_path: str, data: bytes) -> None:
        full_path = self.base_path / file_path
        tmp_path = full_path.with_name(full_path.name + ".tmp")

        try:
            await aiofiles.os.makedirs(full_path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
                await f.flush()
            await aiofiles.os.rename(tmp_path, full_path)
        except OSError as e:
            storage_error_counter.labels(operation="write").inc()
            await self._discard(tmp_path)
            raise StorageError(f"Failed to write batch file {file_path}: {e}") from e

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary file {path}: {e}")

    # ========================================================================
    # Read Path
    # ========================================================================

    async def _read_blob(self, file_path: str) -> bytes:
        async with aiofiles.open(self.base_path / file_path, "rb") as f:
            return await f.read()

    async def load_batch(self, metadata: DataFileMetadata) -> List[RawDataRecord]:
        """
        Read, verify and decode one stored batch.

        Records that fail validation are skipped and logged.

        Raises:
            ChecksumMismatchError: If the blob does not match its checksum
            StorageError: If the blob cannot be read or decoded
        """
        try:
            compressed = await self._read_blob(metadata.file_path)
        except OSError as e:
            raise StorageError(f"Failed to read batch file {metadata.file_path}: {e}") from e

        actual = codec.checksum(compressed)
        if actual != metadata.checksum:
            raise ChecksumMismatchError(metadata.file_path, metadata.checksum, actual)

        try:
            return codec.decode_batch(compressed, metadata.file_path)
        except (OSError, EOFError, zlib.error, ValueError) as e:
            raise StorageError(f"Failed to decode batch file {metadata.file_path}: {e}") from e

    async def verify_file(self, file_id: UUID) -> bool:
        """
        Check a stored blob against its recorded checksum.

        Returns:
            True if the blob exists and matches, False otherwise
        """
        metadata = await self.index.get_file(file_id)
        if metadata is None:
            return False

        try:
            compressed = await self._read_blob(metadata.file_path)
        except OSError as e:
            logger.warning(f"Cannot read {metadata.file_path} for verification: {e}")
            return False

        return codec.verify_checksum(compressed, metadata.checksum)

    async def get_raw_data(
        self,
        source_id: Optional[UUID] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
        parameters: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[RawDataRecord]:
        """
        Query stored records.

        The metadata index only prunes candidate files; every returned record
        has passed the exact filters. Unreadable blobs and malformed records
        are skipped and logged.

        Args:
            source_id: Only records of this source
            time_start: Inclusive lower bound on observation time
            time_end: Inclusive upper bound on observation time
            parameters: Records carrying at least one of these parameters
            limit: Maximum records returned (default 1000)

        Returns:
            Matching records, in file time order
        """
        limit = self.default_limit if limit is None else limit
        if limit <= 0:
            return []

        time_start = ensure_utc(time_start) if time_start else None
        time_end = ensure_utc(time_end) if time_end else None

        candidates = await self.index.find_files(source_id, time_start, time_end, parameters)

        results: List[RawDataRecord] = []
        for metadata in candidates:
            if len(results) >= limit:
                break

            try:
                records = await self.load_batch(metadata)
            except ChecksumMismatchError as e:
                blobs_skipped_counter.labels(reason="checksum").inc()
                logger.error(f"Skipping corrupted batch: {e}")
                continue
            except StorageError as e:
                blobs_skipped_counter.labels(reason="unreadable").inc()
                logger.error(f"Skipping unreadable batch: {e}")
                continue

            for record in records:
                if not record_matches(record, source_id, time_start, time_end, parameters):
                    continue
                results.append(record)
                if len(results) >= limit:
                    break

        return results

    async def get_record(self, record_id: UUID) -> Optional[RawDataRecord]:
        """Point lookup of a single record through the record index."""
        file_path = await self.index.lookup_record(record_id)
        if file_path is None:
            return None

        try:
            compressed = await self._read_blob(file_path)
            records = codec.decode_batch(compressed, file_path)
        except (OSError, EOFError, zlib.error, ValueError) as e:
            logger.error(f"Failed to load record {record_id} from {file_path}: {e}")
            return None

        return next((r for r in records if r.id == record_id), None)

    async def get_storage_stats(self) -> StorageStats:
        """Aggregated statistics over every stored batch."""
        return await self.index.get_stats()

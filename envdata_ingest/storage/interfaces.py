"""
Storage layer interface contracts.

The storage engine keeps record payloads in compressed blobs on disk and
keeps a metadata index of those blobs in a database. This module defines
the contract the index backends implement and the storage exceptions.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID

from envdata_ingest.types import DataFileMetadata, RawDataRecord, StorageStats


# ============================================================================
# Metadata Index
# ============================================================================


class MetadataIndex(ABC):
    """
    Index of stored batch blobs and the records inside them.

    Backs the ``data_file_metadata`` and ``data_record_index`` tables.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables or other structures required by the index."""
        pass

    @abstractmethod
    async def record_batch(
        self, metadata: DataFileMetadata, records: Sequence[RawDataRecord]
    ) -> None:
        """
        Index one written blob and every record it contains.

        Must be all-or-nothing: either the file row and all record rows are
        committed, or none are. Record ids already indexed are ignored.

        Args:
            metadata: File metadata row
            records: Records stored in the blob

        Raises:
            StorageError: If the index could not be updated
        """
        pass

    @abstractmethod
    async def find_files(
        self,
        source_id: Optional[UUID] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
        parameters: Optional[List[str]] = None,
    ) -> List[DataFileMetadata]:
        """
        Candidate files for a query, ordered by ``time_range_start``.

        This is a coarse batch-level filter. Callers must still apply
        exact per-record filters.
        """
        pass

    @abstractmethod
    async def get_file(self, file_id: UUID) -> Optional[DataFileMetadata]:
        """Return the metadata row for a file id."""
        pass

    @abstractmethod
    async def lookup_record(self, record_id: UUID) -> Optional[str]:
        """Return the file path holding a record, or None."""
        pass

    @abstractmethod
    async def get_stats(self) -> StorageStats:
        """Aggregate statistics over every file row."""
        pass

    async def close(self) -> None:
        """Release resources held by the index."""
        pass


def compression_ratio(total_size: int, compressed_size: int) -> float:
    """Compressed size over uncompressed size, 0.0 when nothing is stored."""
    if total_size <= 0:
        return 0.0
    return compressed_size / total_size


# ============================================================================
# Exceptions
# ============================================================================


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class ConnectionError(StorageError):
    """Exception for connection failures."""

    pass


class IntegrityError(StorageError):
    """Exception for data integrity violations."""

    pass


class ChecksumMismatchError(IntegrityError):
    """Raised when a blob does not match its recorded checksum."""

    def __init__(self, file_path: str, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch for {file_path}: expected {expected}, got {actual}"
        )
        self.file_path = file_path
        self.expected = expected
        self.actual = actual

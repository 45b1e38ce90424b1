"""
Storage layer of the engine.

This package provides the batch storage engine and the metadata index
implementations it uses to answer range and parameter queries.
"""

# Interface exports
from envdata_ingest.storage.interfaces import (
    ChecksumMismatchError,
    ConnectionError,
    IntegrityError,
    MetadataIndex,
    StorageError,
)

# Concrete implementations
from envdata_ingest.storage.engine import DataStorage
from envdata_ingest.storage.memory import InMemoryMetadataIndex
from envdata_ingest.storage.postgres import (
    PostgreSQLConnectionPool,
    PostgreSQLMetadataIndex,
)

__all__ = [
    # Interfaces
    "MetadataIndex",
    # Exceptions
    "StorageError",
    "ConnectionError",
    "IntegrityError",
    "ChecksumMismatchError",
    # Implementations
    "DataStorage",
    "InMemoryMetadataIndex",
    "PostgreSQLConnectionPool",
    "PostgreSQLMetadataIndex",
]

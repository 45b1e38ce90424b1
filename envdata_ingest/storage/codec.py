"""
Blob encoding for stored batches.

A batch blob is a gzip-compressed JSON array of RawDataRecord objects.
The checksum is the SHA-256 of the compressed bytes.
"""

import gzip
import hashlib
import json
import logging
from typing import Any, List, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError

from envdata_ingest.types import RawDataRecord

logger = logging.getLogger(__name__)

DEFAULT_COMPRESSION_LEVEL = 6

_records_adapter = TypeAdapter(List[RawDataRecord])


def serialize_records(records: Sequence[RawDataRecord]) -> bytes:
    """Serialize records to a self-describing JSON array."""
    return _records_adapter.dump_json(list(records))


def compress(data: bytes, level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    """
    gzip-compress bytes.

    The gzip header timestamp is fixed at zero so equal input always
    produces equal output.
    """
    return gzip.compress(data, compresslevel=level, mtime=0)


def decompress(data: bytes) -> bytes:
    """Inverse of :func:`compress`."""
    return gzip.decompress(data)


def checksum(data: bytes) -> str:
    """SHA-256 hex digest."""
    return hashlib.sha256(data).hexdigest()


def verify_checksum(data: bytes, expected: str) -> bool:
    """True when ``data`` hashes to ``expected``."""
    return checksum(data) == expected


def encode_batch(
    records: Sequence[RawDataRecord], level: int = DEFAULT_COMPRESSION_LEVEL
) -> Tuple[bytes, bytes, str]:
    """
    Serialize, compress and checksum a batch.

    Returns:
        Tuple of (serialized bytes, compressed bytes, checksum)
    """
    serialized = serialize_records(records)
    compressed = compress(serialized, level)
    return serialized, compressed, checksum(compressed)


def decode_batch(compressed: bytes, file_path: str = "") -> List[RawDataRecord]:
    """
    Decompress and deserialize a batch, skipping malformed records.

    Raises:
        ValueError: If the blob is not a gzip JSON array
    """
    payload: Any = json.loads(decompress(compressed))
    if not isinstance(payload, list):
        raise ValueError(f"Batch {file_path} is not a JSON array")

    records: List[RawDataRecord] = []
    for position, item in enumerate(payload):
        try:
            records.append(RawDataRecord.model_validate(item))
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed record #{position} in {file_path}: "
                f"{e.error_count()} validation error(s)"
            )
    return records

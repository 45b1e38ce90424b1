"""
Mock implementations for testing.

These mocks stand in for provider collectors and let tests observe the
storage engine without a database.
"""

from tests.mocks.collectors import (
    BrokenCollector,
    FlakyCollector,
    MockCollector,
)
from tests.mocks.storage import (
    FailingMetadataIndex,
    RecordingStorage,
)

__all__ = [
    "MockCollector",
    "FlakyCollector",
    "BrokenCollector",
    "RecordingStorage",
    "FailingMetadataIndex",
]

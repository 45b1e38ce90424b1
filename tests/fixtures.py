"""
Test fixtures and sample data for development and testing.

This module provides factories for sources and records, and a controllable
clock for driving the scheduler without wall-clock time.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from envdata_ingest.types import (
    Coordinates,
    DataMetadata,
    DataSource,
    DataSourceCategory,
    IngestionStatus,
    QualityFlag,
    QualitySeverity,
    RawDataRecord,
    UpdateFrequency,
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


# ============================================================================
# Sample Sources
# ============================================================================


def create_sample_source(
    name: str = "Test Weather Station",
    category: DataSourceCategory = DataSourceCategory.WEATHER_STATIONS,
    frequency: UpdateFrequency = UpdateFrequency.HOURLY,
    priority: int = 5,
    status: IngestionStatus = IngestionStatus.ACTIVE,
    parameters: Optional[List[str]] = None,
) -> DataSource:
    """Create a sample data source."""
    return DataSource(
        name=name,
        category=category,
        provider="Test Provider",
        description="Source used in tests",
        api_endpoint="https://api.test.example.com/observations",
        update_frequency=frequency,
        parameters=parameters or ["temperature", "humidity"],
        quality_indicators=["qc_flag"],
        status=status,
        priority=priority,
    )


# ============================================================================
# Sample Records
# ============================================================================


def create_sample_record(
    source_id: UUID,
    timestamp: datetime = T0,
    parameters: Optional[Dict[str, str]] = None,
    value: float = 21.5,
) -> RawDataRecord:
    """Create a sample raw record."""
    parameters = parameters if parameters is not None else {"temperature": str(value)}
    return RawDataRecord(
        source_id=source_id,
        timestamp=timestamp,
        ingestion_time=timestamp + timedelta(minutes=1),
        data={"value": value, "station": "ZA-001"},
        metadata=DataMetadata(
            parameters=parameters,
            units={name: "degC" for name in parameters},
            coordinates=Coordinates(latitude=-25.75, longitude=28.19),
            elevation=1339.0,
            instrument_info="Vaisala WXT536",
        ),
        quality_flags=[
            QualityFlag(
                parameter="temperature",
                flag="ok",
                severity=QualitySeverity.INFO,
            )
        ],
    )


def create_sample_records(
    source_id: UUID,
    start: datetime = T0,
    count: int = 10,
    step: timedelta = timedelta(minutes=5),
    parameters: Optional[Dict[str, str]] = None,
) -> List[RawDataRecord]:
    """Create ``count`` records spaced ``step`` apart."""
    return [
        create_sample_record(
            source_id,
            timestamp=start + step * i,
            parameters=parameters,
            value=20.0 + i * 0.1,
        )
        for i in range(count)
    ]

"""
Shared type definitions for the environmental data ingestion engine.

This module contains the value types passed between the source registry,
the scheduler, the collectors and the storage engine.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Enums
# ============================================================================


class DataSourceCategory(str, Enum):
    """Kind of data source. Each category is served by one collector."""

    # Satellite
    SATELLITE_IMAGING = "satellite_imaging"
    SATELLITE_RADAR = "satellite_radar"
    SATELLITE_LIDAR = "satellite_lidar"
    SATELLITE_RADIOMETRY = "satellite_radiometry"

    # Ground-based networks
    WEATHER_STATIONS = "weather_stations"
    RESEARCH_NETWORKS = "research_networks"
    CITIZEN_SCIENCE = "citizen_science"
    AGRICULTURAL_SENSORS = "agricultural_sensors"

    # Remote sensing
    GROUND_BASED_RADAR = "ground_based_radar"
    GROUND_BASED_LIDAR = "ground_based_lidar"
    FLUX_TOWERS = "flux_towers"
    SOIL_MONITORING = "soil_monitoring"

    # Reanalysis and models
    GLOBAL_MODELS = "global_models"
    REGIONAL_MODELS = "regional_models"
    REANALYSIS_DATA = "reanalysis_data"
    CLIMATE_DATA = "climate_data"

    # Agricultural
    CROP_MONITORING = "crop_monitoring"
    PEST_DISEASE = "pest_disease"
    SOIL_HEALTH = "soil_health"
    IRRIGATION_SYSTEMS = "irrigation_systems"

    # Ocean and atmosphere
    OCEAN_OBSERVATIONS = "ocean_observations"
    ATMOSPHERIC_PROFILING = "atmospheric_profiling"
    AEROSOL_DATA = "aerosol_data"
    GREENHOUSE_GASES = "greenhouse_gases"

    # Publications
    SCIENTIFIC_PAPERS = "scientific_papers"
    TECHNICAL_REPORTS = "technical_reports"
    DATASET_DOCUMENTATION = "dataset_documentation"
    METHODOLOGY_PAPERS = "methodology_papers"


class UpdateFrequency(str, Enum):
    """How often a provider publishes new data."""

    REAL_TIME = "real_time"  # < 1 minute
    HIGH_FREQUENCY = "high_frequency"  # 1-15 minutes
    HOURLY = "hourly"
    THREE_HOURLY = "three_hourly"
    SIX_HOURLY = "six_hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    SEASONAL = "seasonal"
    ANNUAL = "annual"
    IRREGULAR = "irregular"


class IngestionStatus(str, Enum):
    """Operational status of a data source."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    MAINTENANCE = "maintenance"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION_FAILED = "authentication_failed"


class AuthMethod(str, Enum):
    """Authentication scheme required by a provider."""

    API_KEY = "api_key"
    OAUTH2 = "oauth2"
    BASIC_AUTH = "basic_auth"
    BEARER_TOKEN = "bearer_token"
    CERTIFICATE = "certificate"
    NONE = "none"


class DataFormat(str, Enum):
    """Wire format delivered by a provider."""

    JSON = "json"
    XML = "xml"
    NETCDF = "netcdf"
    HDF5 = "hdf5"
    GEOTIFF = "geotiff"
    CSV = "csv"
    BINARY = "binary"
    GRIB = "grib"
    SHAPEFILE = "shapefile"
    KML = "kml"
    WMS = "wms"
    WFS = "wfs"


class CoverageScope(str, Enum):
    """Spatial extent of a data source."""

    GLOBAL = "global"
    CONTINENTAL = "continental"
    REGIONAL = "regional"
    NATIONAL = "national"
    LOCAL = "local"
    POINT_OBSERVATION = "point_observation"


class QualitySeverity(str, Enum):
    """Severity attached to a quality flag."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TaskStatus(str, Enum):
    """Lifecycle state of a scheduled ingestion task."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"  # Transient, recomputed into SCHEDULED
    FAILED = "failed"
    RETRYING = "retrying"


# ============================================================================
# Data Sources
# ============================================================================


class BoundingBox(BaseModel):
    """Geographic bounding box in decimal degrees."""

    north: float
    south: float
    east: float
    west: float

    model_config = ConfigDict(frozen=True)


class GeographicalCoverage(BaseModel):
    """Spatial coverage of a source."""

    scope: CoverageScope = CoverageScope.GLOBAL
    bounds: Optional[BoundingBox] = None
    resolution: Optional[float] = None  # meters


class TemporalCoverage(BaseModel):
    """Temporal coverage of a source."""

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    temporal_resolution: Optional[str] = None


class DataSource(BaseModel):
    """A registered provider of observational data."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    category: DataSourceCategory
    provider: str
    description: str = ""
    api_endpoint: Optional[str] = None
    auth_required: bool = False
    auth_method: Optional[AuthMethod] = None
    data_format: DataFormat = DataFormat.JSON
    update_frequency: UpdateFrequency = UpdateFrequency.DAILY
    geographical_coverage: GeographicalCoverage = Field(
        default_factory=GeographicalCoverage
    )
    temporal_coverage: TemporalCoverage = Field(default_factory=TemporalCoverage)
    parameters: List[str] = Field(default_factory=list)
    quality_indicators: List[str] = Field(default_factory=list)
    associated_publications: List[str] = Field(default_factory=list)
    last_ingestion: Optional[datetime] = None
    status: IngestionStatus = IngestionStatus.ACTIVE
    priority: int = Field(default=5, ge=1, le=10)  # 10 is highest

    @property
    def is_active(self) -> bool:
        return self.status == IngestionStatus.ACTIVE


# ============================================================================
# Raw Records
# ============================================================================


class Coordinates(BaseModel):
    """Location of an observation."""

    latitude: float
    longitude: float
    coordinate_system: str = "WGS84"

    model_config = ConfigDict(frozen=True)


class DataMetadata(BaseModel):
    """Descriptive metadata attached to a raw record."""

    parameters: Dict[str, str] = Field(default_factory=dict)
    units: Dict[str, str] = Field(default_factory=dict)
    coordinates: Optional[Coordinates] = None
    elevation: Optional[float] = None
    instrument_info: Optional[str] = None
    processing_level: Optional[str] = None
    version: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class QualityFlag(BaseModel):
    """Quality annotation for one parameter of a record."""

    parameter: str
    flag: str
    description: str = ""
    severity: QualitySeverity = QualitySeverity.INFO

    model_config = ConfigDict(frozen=True)


class RawDataRecord(BaseModel):
    """One collected observation plus metadata, prior to analysis."""

    id: UUID = Field(default_factory=uuid4)
    source_id: UUID
    timestamp: datetime  # Observation time
    ingestion_time: datetime = Field(default_factory=utc_now)
    data: Any = None
    metadata: DataMetadata = Field(default_factory=DataMetadata)
    quality_flags: List[QualityFlag] = Field(default_factory=list)
    file_path: Optional[str] = None  # Externalized large payload

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp", "ingestion_time")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def parameter_names(self) -> List[str]:
        """Names of the parameters carried by this record."""
        return list(self.metadata.parameters.keys())


# ============================================================================
# Scheduling
# ============================================================================


class ScheduledTask(BaseModel):
    """Scheduling state for one active source."""

    id: UUID = Field(default_factory=uuid4)
    source_id: UUID
    next_execution: datetime
    frequency: UpdateFrequency
    priority: int = 5
    retry_count: int = 0
    max_retries: int = 3
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    status: TaskStatus = TaskStatus.SCHEDULED
    consecutive_failures: int = 0

    def is_due(self, now: datetime) -> bool:
        """True when the task may be dispatched at ``now``."""
        if self.status not in (TaskStatus.SCHEDULED, TaskStatus.RETRYING):
            return False
        return self.next_execution <= now


class TaskResult(BaseModel):
    """Outcome of a single task execution."""

    task_id: Optional[UUID] = None  # None for manual collections of unscheduled sources
    source_id: UUID
    success: bool
    records_collected: int = 0
    data_volume: int = 0
    execution_seconds: float = 0.0
    error: Optional[str] = None
    skipped: bool = False
    records: List[RawDataRecord] = Field(default_factory=list)  # Manual collections only


class SchedulerStats(BaseModel):
    """Aggregate counters maintained by the scheduler."""

    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    records_processed: int = 0
    data_volume_collected: int = 0
    average_execution_seconds: float = 0.0
    last_collection_time: Optional[datetime] = None
    active_sources: int = 0
    error_sources: int = 0
    scheduled_tasks: int = 0
    started_at: Optional[datetime] = None


class SourceHealth(BaseModel):
    """Health snapshot of a data source."""

    source_id: UUID
    is_healthy: bool = True
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_failures: int = 0
    success_rate: float = 1.0


# ============================================================================
# Storage
# ============================================================================


class DataFileMetadata(BaseModel):
    """Index row describing one stored batch blob."""

    file_id: UUID
    source_id: UUID
    file_path: str
    file_size: int  # Uncompressed bytes
    compressed_size: int
    record_count: int
    checksum: str  # SHA-256 hex of the compressed bytes
    created_at: datetime
    time_range_start: datetime
    time_range_end: datetime
    parameters: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def overlaps(
        self,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> bool:
        """True when the batch time range intersects the given window."""
        if time_start is not None and self.time_range_end < time_start:
            return False
        if time_end is not None and self.time_range_start > time_end:
            return False
        return True


class StorageStats(BaseModel):
    """Aggregated view over all stored batches."""

    total_records: int = 0
    total_size_bytes: int = 0
    compressed_size_bytes: int = 0
    compression_ratio: float = 0.0
    oldest_record: Optional[datetime] = None
    newest_record: Optional[datetime] = None
    sources_count: int = 0
    files_count: int = 0

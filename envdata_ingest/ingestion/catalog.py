"""
Catalog of known environmental data sources.

Source ids are derived from the source name, so loading the catalog twice
updates the same registry entries instead of duplicating them.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import NAMESPACE_URL, UUID, uuid5

from envdata_ingest.types import (
    AuthMethod,
    BoundingBox,
    CoverageScope,
    DataFormat,
    DataSource,
    DataSourceCategory,
    GeographicalCoverage,
    IngestionStatus,
    TemporalCoverage,
    UpdateFrequency,
)

CATALOG_NAMESPACE = uuid5(NAMESPACE_URL, "envdata-ingest/catalog")

GLOBAL_BOUNDS = BoundingBox(north=90.0, south=-90.0, east=180.0, west=-180.0)
SOUTH_AFRICA_BOUNDS = BoundingBox(north=-22.1, south=-34.8, east=32.9, west=16.5)

NASA_CMR_GRANULES = "https://cmr.earthdata.nasa.gov/search/granules.json"
COPERNICUS_SEARCH = "https://scihub.copernicus.eu/dhus/search"


def catalog_source_id(name: str) -> UUID:
    """Stable id of a catalog source."""
    return uuid5(CATALOG_NAMESPACE, name)


def _source(
    name: str,
    category: DataSourceCategory,
    provider: str,
    description: str,
    api_endpoint: str,
    update_frequency: UpdateFrequency,
    parameters: List[str],
    quality_indicators: List[str],
    priority: int,
    scope: CoverageScope = CoverageScope.GLOBAL,
    bounds: Optional[BoundingBox] = GLOBAL_BOUNDS,
    resolution: Optional[float] = None,
    start_date: Optional[datetime] = None,
    temporal_resolution: Optional[str] = None,
    auth_method: AuthMethod = AuthMethod.API_KEY,
    data_format: DataFormat = DataFormat.JSON,
    status: IngestionStatus = IngestionStatus.ACTIVE,
) -> DataSource:
    return DataSource(
        id=catalog_source_id(name),
        name=name,
        category=category,
        provider=provider,
        description=description,
        api_endpoint=api_endpoint,
        auth_required=auth_method != AuthMethod.NONE,
        auth_method=auth_method,
        data_format=data_format,
        update_frequency=update_frequency,
        geographical_coverage=GeographicalCoverage(
            scope=scope, bounds=bounds, resolution=resolution
        ),
        temporal_coverage=TemporalCoverage(
            start_date=start_date, temporal_resolution=temporal_resolution
        ),
        parameters=parameters,
        quality_indicators=quality_indicators,
        status=status,
        priority=priority,
    )


def _utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


# ============================================================================
# Space Agencies
# ============================================================================


def nasa_sources() -> List[DataSource]:
    return [
        _source(
            name="MODIS Terra Daily Global 1km",
            category=DataSourceCategory.SATELLITE_IMAGING,
            provider="NASA",
            description="MODIS/Terra Surface Reflectance Daily Global 1km and 500m",
            api_endpoint=NASA_CMR_GRANULES,
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "surface_reflectance_500m",
                "surface_reflectance_1km",
                "quality_500m",
                "quality_1km",
                "viewing_zenith_angle",
                "solar_zenith_angle",
                "relative_azimuth_angle",
            ],
            quality_indicators=[
                "MOD_Grid_1km_2D/quality_control_1km",
                "MOD_Grid_500m_2D/quality_control_500m",
            ],
            priority=9,
            resolution=1000.0,
            start_date=_utc(2000, 2, 24),
            temporal_resolution="1 day",
            auth_method=AuthMethod.BEARER_TOKEN,
            data_format=DataFormat.HDF5,
        ),
        _source(
            name="VIIRS NPP Surface Reflectance",
            category=DataSourceCategory.SATELLITE_IMAGING,
            provider="NASA",
            description="VIIRS/NPP Surface Reflectance 6-Min L2 Swath 750m",
            api_endpoint=NASA_CMR_GRANULES,
            update_frequency=UpdateFrequency.HIGH_FREQUENCY,
            parameters=[
                "surface_reflectance_m01",
                "surface_reflectance_m02",
                "surface_reflectance_m03",
                "surface_reflectance_m04",
                "surface_reflectance_m05",
                "surface_reflectance_m07",
                "surface_reflectance_m08",
                "surface_reflectance_m10",
                "surface_reflectance_m11",
                "quality_flags",
            ],
            quality_indicators=["QF1_VIIRSSRREFL", "QF2_VIIRSSRREFL"],
            priority=8,
            resolution=750.0,
            start_date=_utc(2012, 1, 19),
            temporal_resolution="6 minutes",
            auth_method=AuthMethod.BEARER_TOKEN,
            data_format=DataFormat.HDF5,
        ),
        _source(
            name="Landsat 8-9 OLI Surface Reflectance",
            category=DataSourceCategory.SATELLITE_IMAGING,
            provider="NASA",
            description="Landsat 8-9 Operational Land Imager Collection 2 Level-2",
            api_endpoint=NASA_CMR_GRANULES,
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "surface_reflectance_band_1",
                "surface_reflectance_band_2",
                "surface_reflectance_band_3",
                "surface_reflectance_band_4",
                "surface_reflectance_band_5",
                "surface_reflectance_band_6",
                "surface_reflectance_band_7",
                "thermal_infrared_band_10",
                "thermal_infrared_band_11",
                "quality_assessment",
            ],
            quality_indicators=["pixel_qa", "radsat_qa"],
            priority=7,
            resolution=30.0,
            start_date=_utc(2013, 4, 11),
            temporal_resolution="16 days",
            auth_method=AuthMethod.BEARER_TOKEN,
            data_format=DataFormat.GEOTIFF,
        ),
        _source(
            name="GRACE-FO Terrestrial Water Storage",
            category=DataSourceCategory.SATELLITE_RADIOMETRY,
            provider="NASA",
            description="GRACE-FO monthly terrestrial water storage anomalies",
            api_endpoint=NASA_CMR_GRANULES,
            update_frequency=UpdateFrequency.MONTHLY,
            parameters=[
                "terrestrial_water_storage_thickness",
                "uncertainty",
                "soil_moisture_thickness",
                "surface_water_thickness",
                "snow_water_equivalent_thickness",
                "canopy_water_thickness",
            ],
            quality_indicators=["uncertainty", "processing_date"],
            priority=6,
            resolution=100000.0,
            start_date=_utc(2018, 5, 22),
            temporal_resolution="1 month",
            auth_method=AuthMethod.BEARER_TOKEN,
            data_format=DataFormat.NETCDF,
        ),
    ]


def noaa_sources() -> List[DataSource]:
    return [
        _source(
            name="GOES-16 ABI Level 2 Meteorology",
            category=DataSourceCategory.SATELLITE_RADIOMETRY,
            provider="NOAA",
            description="GOES-16 Advanced Baseline Imager Level 2 cloud and surface products",
            api_endpoint="https://www.ncei.noaa.gov/data/goes16/access/abi-l2-mcmip",
            update_frequency=UpdateFrequency.HIGH_FREQUENCY,
            parameters=[
                "cloud_mask",
                "cloud_top_height",
                "cloud_top_temperature",
                "cloud_top_pressure",
                "cloud_optical_depth",
                "cloud_particle_size",
                "cloud_phase",
                "land_surface_temperature",
                "sea_surface_temperature",
            ],
            quality_indicators=["DQF"],
            priority=8,
            scope=CoverageScope.CONTINENTAL,
            bounds=BoundingBox(north=81.3, south=-81.3, east=6.3, west=-156.2),
            resolution=2000.0,
            start_date=_utc(2017, 12, 18),
            temporal_resolution="15 minutes",
            auth_method=AuthMethod.NONE,
            data_format=DataFormat.NETCDF,
        ),
        _source(
            name="Global Historical Climate Network Daily",
            category=DataSourceCategory.WEATHER_STATIONS,
            provider="NOAA",
            description="Daily climate summaries from land surface stations worldwide",
            api_endpoint="https://www.ncei.noaa.gov/data/ghcn-daily/access",
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "temperature_maximum",
                "temperature_minimum",
                "precipitation",
                "snowfall",
                "snow_depth",
                "wind_speed",
                "wind_direction",
            ],
            quality_indicators=["measurement_flag", "quality_flag", "source_flag"],
            priority=9,
            start_date=_utc(1763, 1, 1),
            temporal_resolution="1 day",
            auth_method=AuthMethod.NONE,
            data_format=DataFormat.CSV,
        ),
        _source(
            name="NEXRAD Level II Base Data",
            category=DataSourceCategory.GROUND_BASED_RADAR,
            provider="NOAA",
            description="Weather surveillance radar base reflectivity and velocity",
            api_endpoint="https://www.ncei.noaa.gov/data/nexrad-level-2/access",
            update_frequency=UpdateFrequency.REAL_TIME,
            parameters=[
                "reflectivity",
                "velocity",
                "spectrum_width",
                "differential_reflectivity",
                "differential_phase",
                "correlation_coefficient",
            ],
            quality_indicators=["radial_status", "elevation_status"],
            priority=7,
            scope=CoverageScope.NATIONAL,
            bounds=BoundingBox(north=71.5, south=18.9, east=-66.9, west=-179.1),
            resolution=250.0,
            start_date=_utc(1991, 6, 1),
            temporal_resolution="5 minutes",
            auth_method=AuthMethod.NONE,
            data_format=DataFormat.BINARY,
        ),
    ]


def esa_sources() -> List[DataSource]:
    return [
        _source(
            name="Sentinel-1 SAR Ground Range Detected",
            category=DataSourceCategory.SATELLITE_RADAR,
            provider="ESA",
            description="Sentinel-1A/B SAR Ground Range Detected (GRD) products",
            api_endpoint=COPERNICUS_SEARCH,
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "vv_polarization",
                "vh_polarization",
                "hh_polarization",
                "hv_polarization",
                "incidence_angle",
                "noise_equivalent_sigma_zero",
            ],
            quality_indicators=["noise_lut", "calibration_lut"],
            priority=8,
            resolution=10.0,
            start_date=_utc(2014, 10, 3),
            temporal_resolution="6 days",
            auth_method=AuthMethod.BASIC_AUTH,
            data_format=DataFormat.GEOTIFF,
        ),
        _source(
            name="Sentinel-2 MSI Level-2A Surface Reflectance",
            category=DataSourceCategory.SATELLITE_IMAGING,
            provider="ESA",
            description="Sentinel-2A/B MSI Level-2A Bottom-of-Atmosphere Corrected Reflectance",
            api_endpoint=COPERNICUS_SEARCH,
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "blue_443nm",
                "blue_490nm",
                "green_560nm",
                "red_665nm",
                "vegetation_red_edge_705nm",
                "vegetation_red_edge_740nm",
                "vegetation_red_edge_783nm",
                "nir_842nm",
                "nir_narrow_865nm",
                "water_vapour_945nm",
                "swir_cirrus_1375nm",
                "swir_1610nm",
                "swir_2190nm",
                "scene_classification",
                "aerosol_optical_thickness",
                "water_vapour",
            ],
            quality_indicators=["scene_classification_map", "quality_indicators"],
            priority=9,
            resolution=10.0,
            start_date=_utc(2015, 6, 23),
            temporal_resolution="5 days",
            auth_method=AuthMethod.BASIC_AUTH,
            data_format=DataFormat.GEOTIFF,
        ),
        _source(
            name="Sentinel-3 OLCI Level-2 Land Products",
            category=DataSourceCategory.SATELLITE_IMAGING,
            provider="ESA",
            description="Sentinel-3A/B OLCI Level-2 Land Full Resolution Products",
            api_endpoint=COPERNICUS_SEARCH,
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "leaf_area_index",
                "fraction_of_absorbed_photosynthetically_active_radiation",
                "fraction_of_green_vegetation_cover",
                "canopy_chlorophyll_content",
                "canopy_water_content",
                "normalized_difference_vegetation_index",
                "terrestrial_chlorophyll_index",
                "red_chlorophyll_index",
            ],
            quality_indicators=["quality_flags", "input_flags"],
            priority=7,
            resolution=300.0,
            start_date=_utc(2016, 2, 16),
            temporal_resolution="1 day",
            auth_method=AuthMethod.BASIC_AUTH,
            data_format=DataFormat.NETCDF,
        ),
        _source(
            name="Sentinel-5P TROPOMI Level-2 Atmospheric Products",
            category=DataSourceCategory.ATMOSPHERIC_PROFILING,
            provider="ESA",
            description="Sentinel-5P TROPOMI Level-2 Atmospheric Composition Products",
            api_endpoint=COPERNICUS_SEARCH,
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "nitrogen_dioxide_tropospheric_column",
                "sulfur_dioxide_column",
                "carbon_monoxide_column",
                "methane_column",
                "ozone_column",
                "formaldehyde_tropospheric_column",
                "aerosol_index",
                "cloud_fraction",
            ],
            quality_indicators=["quality_assurance_value", "processing_quality_flags"],
            priority=6,
            resolution=5500.0,
            start_date=_utc(2017, 10, 13),
            temporal_resolution="1 day",
            auth_method=AuthMethod.BASIC_AUTH,
            data_format=DataFormat.NETCDF,
        ),
    ]


# ============================================================================
# Research Networks
# ============================================================================


def research_network_sources() -> List[DataSource]:
    return [
        _source(
            name="FLUXNET2015 Eddy Covariance Dataset",
            category=DataSourceCategory.FLUX_TOWERS,
            provider="FLUXNET",
            description="Eddy covariance carbon, water and energy fluxes from tower sites",
            api_endpoint="https://fluxnet.org/data/fluxnet2015-dataset",
            update_frequency=UpdateFrequency.ANNUAL,
            parameters=[
                "net_ecosystem_exchange",
                "gross_primary_productivity",
                "ecosystem_respiration",
                "latent_heat_flux",
                "sensible_heat_flux",
                "soil_heat_flux",
                "net_radiation",
                "air_temperature",
                "soil_temperature",
                "relative_humidity",
                "vapor_pressure_deficit",
                "atmospheric_pressure",
                "wind_speed",
                "wind_direction",
                "precipitation",
                "soil_water_content",
            ],
            quality_indicators=[
                "quality_flag_co2",
                "quality_flag_h2o",
                "quality_flag_energy",
            ],
            priority=8,
            scope=CoverageScope.POINT_OBSERVATION,
            start_date=_utc(1991, 1, 1),
            temporal_resolution="30 minutes",
            data_format=DataFormat.CSV,
        ),
        _source(
            name="ICOS Atmosphere Greenhouse Gas Observations",
            category=DataSourceCategory.GREENHOUSE_GASES,
            provider="ICOS",
            description="Continuous greenhouse gas mole fractions from European stations",
            api_endpoint="https://data.icos-cp.eu/portal",
            update_frequency=UpdateFrequency.REAL_TIME,
            parameters=[
                "co2_concentration",
                "ch4_concentration",
                "co_concentration",
                "n2o_concentration",
                "meteorological_data",
            ],
            quality_indicators=["measurement_quality_flag", "calibration_flag"],
            priority=7,
            scope=CoverageScope.CONTINENTAL,
            bounds=BoundingBox(north=71.0, south=34.0, east=40.0, west=-25.0),
            start_date=_utc(2015, 1, 1),
            temporal_resolution="1 hour",
            auth_method=AuthMethod.NONE,
        ),
        _source(
            name="International Soil Moisture Network",
            category=DataSourceCategory.SOIL_MONITORING,
            provider="ISMN",
            description="Harmonized in-situ soil moisture observations",
            api_endpoint="https://ismn.earth/en/data-access",
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "soil_moisture",
                "soil_temperature",
                "soil_suction",
                "precipitation",
                "air_temperature",
                "snow_depth",
                "snow_water_equivalent",
            ],
            quality_indicators=["quality_flag", "original_flag"],
            priority=8,
            scope=CoverageScope.POINT_OBSERVATION,
            start_date=_utc(1952, 1, 1),
            temporal_resolution="1 hour",
            auth_method=AuthMethod.BASIC_AUTH,
            data_format=DataFormat.CSV,
        ),
    ]


# ============================================================================
# Commercial and Regional Providers
# ============================================================================


def commercial_sources() -> List[DataSource]:
    # Requires a commercial license, registered inactive
    return [
        _source(
            name="Planet SkySat Daily Imagery",
            category=DataSourceCategory.SATELLITE_IMAGING,
            provider="Planet Labs",
            description="High resolution daily multispectral imagery",
            api_endpoint="https://api.planet.com/data/v1",
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "blue_band",
                "green_band",
                "red_band",
                "near_infrared_band",
                "panchromatic",
            ],
            quality_indicators=["cloud_cover", "pixel_quality"],
            priority=5,
            resolution=0.5,
            temporal_resolution="1 day",
            data_format=DataFormat.GEOTIFF,
            status=IngestionStatus.INACTIVE,
        ),
    ]


def regional_sources() -> List[DataSource]:
    return [
        _source(
            name="South African Weather Service Observations",
            category=DataSourceCategory.WEATHER_STATIONS,
            provider="SAWS",
            description="Hourly synoptic observations from the national station network",
            api_endpoint="https://www.weathersa.co.za/climate/climateinfo/datacapture",
            update_frequency=UpdateFrequency.HOURLY,
            parameters=[
                "air_temperature",
                "relative_humidity",
                "atmospheric_pressure",
                "wind_speed",
                "wind_direction",
                "precipitation",
                "solar_radiation",
                "evaporation",
            ],
            quality_indicators=["observation_quality", "instrument_status"],
            priority=9,
            scope=CoverageScope.NATIONAL,
            bounds=SOUTH_AFRICA_BOUNDS,
            temporal_resolution="hourly",
        ),
        _source(
            name="ARC Agricultural Climate Data",
            category=DataSourceCategory.AGRICULTURAL_SENSORS,
            provider="ARC",
            description="Agricultural Research Council automatic weather station network",
            api_endpoint="https://www.arc.agric.za/arc-iscw/Pages/Climate-Data.aspx",
            update_frequency=UpdateFrequency.DAILY,
            parameters=[
                "rainfall",
                "temperature_maximum",
                "temperature_minimum",
                "evaporation_a_pan",
                "relative_humidity",
                "wind_speed",
                "solar_radiation",
                "soil_temperature",
                "soil_moisture",
            ],
            quality_indicators=["data_quality_flag"],
            priority=10,
            scope=CoverageScope.NATIONAL,
            bounds=SOUTH_AFRICA_BOUNDS,
            temporal_resolution="daily",
            auth_method=AuthMethod.CERTIFICATE,
            data_format=DataFormat.CSV,
        ),
    ]


def default_catalog() -> List[DataSource]:
    """Every known source, grouped by provider type."""
    return (
        nasa_sources()
        + noaa_sources()
        + esa_sources()
        + research_network_sources()
        + commercial_sources()
        + regional_sources()
    )

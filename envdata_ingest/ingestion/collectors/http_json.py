"""
Generic JSON-over-HTTP collector.

Fetches ``source.api_endpoint`` and maps each element of the returned JSON
list into a RawDataRecord. Suitable for providers that expose flat
observation lists; provider-specific formats get their own collector.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from envdata_ingest.ingestion.base import CollectorError
from envdata_ingest.ingestion.scheduler import frequency_offset
from envdata_ingest.types import (
    AuthMethod,
    Coordinates,
    DataMetadata,
    DataSource,
    RawDataRecord,
    ensure_utc,
)

logger = logging.getLogger(__name__)

# Rough serialized size of one parameter value inside a record
BYTES_PER_PARAMETER = 64


class HttpJsonCollector:
    """
    Collector for sources serving a JSON list of observations.

    Each element is an object holding a timestamp, optional latitude and
    longitude, and scalar parameter values. The whole element is kept as the
    record payload.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        results_key: Optional[str] = None,
        timestamp_field: str = "timestamp",
        latitude_field: str = "latitude",
        longitude_field: str = "longitude",
        units: Optional[Dict[str, str]] = None,
        api_key: Optional[str] = None,
        max_records: Optional[int] = None,
    ):
        """
        Initialize the collector.

        Args:
            timeout_seconds: Total timeout of one HTTP request
            results_key: Key of the list inside an object response, if any
            timestamp_field: Element field holding the observation time
            latitude_field: Element field holding the latitude
            longitude_field: Element field holding the longitude
            units: Units attached to known parameters
            api_key: Credential sent to sources requiring API key or bearer auth
            max_records: Cap on records returned per call
        """
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.results_key = results_key
        self.timestamp_field = timestamp_field
        self.latitude_field = latitude_field
        self.longitude_field = longitude_field
        self.units = units or {}
        self.api_key = api_key
        self.max_records = max_records

    def _headers(self, source: DataSource) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if not self.api_key:
            return headers
        if source.auth_method == AuthMethod.API_KEY:
            headers["X-API-Key"] = self.api_key
        elif source.auth_method == AuthMethod.BEARER_TOKEN:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def collect_data(self, source: DataSource) -> List[RawDataRecord]:
        if not source.api_endpoint:
            raise CollectorError(
                f"Source {source.name} has no API endpoint", source.id, recoverable=False
            )

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(
                    source.api_endpoint, headers=self._headers(source)
                ) as response:
                    response.raise_for_status()
                    payload = await response.json(content_type=None)
        except aiohttp.ClientResponseError as e:
            raise CollectorError(
                f"HTTP {e.status} from {source.api_endpoint}",
                source.id,
                recoverable=e.status >= 500 or e.status == 429,
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CollectorError(
                f"Request to {source.api_endpoint} failed: {e!r}", source.id
            ) from e
        except ValueError as e:
            raise CollectorError(
                f"Invalid JSON from {source.api_endpoint}: {e}", source.id
            ) from e

        items = self._extract_items(payload, source)

        records = []
        for item in items:
            record = self._parse_item(item, source)
            if record is not None:
                records.append(record)
            if self.max_records is not None and len(records) >= self.max_records:
                break

        logger.info(f"Fetched {len(records)}/{len(items)} records from {source.name}")
        return records

    def _extract_items(self, payload: Any, source: DataSource) -> List[Any]:
        if self.results_key is not None:
            if not isinstance(payload, Mapping) or self.results_key not in payload:
                raise CollectorError(
                    f"Response from {source.name} has no '{self.results_key}' field",
                    source.id,
                )
            payload = payload[self.results_key]

        if not isinstance(payload, list):
            raise CollectorError(
                f"Expected a JSON list from {source.name}, got {type(payload).__name__}",
                source.id,
            )
        return payload

    def _parse_timestamp(self, value: Any) -> datetime:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, str):
            return ensure_utc(datetime.fromisoformat(value))
        raise ValueError(f"Unsupported timestamp value {value!r}")

    def _parse_item(self, item: Any, source: DataSource) -> Optional[RawDataRecord]:
        """Parse one element, or return None if it is unusable."""
        if not isinstance(item, Mapping):
            logger.warning(f"Skipping non-object element from {source.name}")
            return None

        try:
            timestamp = self._parse_timestamp(item[self.timestamp_field])
        except (KeyError, ValueError, OverflowError, OSError) as e:
            logger.warning(f"Skipping element from {source.name} without valid timestamp: {e}")
            return None

        coordinates = None
        lat = item.get(self.latitude_field)
        lon = item.get(self.longitude_field)
        if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
            coordinates = Coordinates(latitude=float(lat), longitude=float(lon))

        reserved = {self.timestamp_field, self.latitude_field, self.longitude_field}
        wanted = set(source.parameters)
        parameters = {
            key: str(value)
            for key, value in item.items()
            if key not in reserved
            and isinstance(value, (int, float, str))
            and not isinstance(value, bool)
            and (not wanted or key in wanted)
        }

        return RawDataRecord(
            source_id=source.id,
            timestamp=timestamp,
            data=dict(item),
            metadata=DataMetadata(
                parameters=parameters,
                units={k: u for k, u in self.units.items() if k in parameters},
                coordinates=coordinates,
            ),
        )

    async def validate_connection(self, source: DataSource) -> bool:
        if not source.api_endpoint:
            return False

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(
                    source.api_endpoint, headers=self._headers(source)
                ) as response:
                    return response.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Connection check for {source.name} failed: {e!r}")
            return False

    async def get_available_parameters(self, source: DataSource) -> List[str]:
        return list(source.parameters)

    async def estimate_data_volume(self, source: DataSource) -> int:
        """Bytes per day assuming one record per parameter per run."""
        runs_per_day = max(1, int(86400 // frequency_offset(source.update_frequency).total_seconds()))
        return len(source.parameters) * BYTES_PER_PARAMETER * runs_per_day

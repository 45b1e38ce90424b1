"""
Configuration for the ingestion engine.

Settings are read from environment variables, with a ``.env`` file loaded
first if present. Only this module reads the environment; the engine
classes receive plain parameters.
"""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from envdata_ingest.ingestion.base import ConfigurationError
from envdata_ingest.ingestion.scheduler import RetryPolicy

INDEX_BACKENDS = ("postgres", "memory")


def _get(env: Mapping[str, str], name: str, default: str) -> str:
    return env.get(name, default).strip()


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get(env, name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'")


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'")


def _get_optional_int(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = _get(env, name, "")
    if not raw:
        return None
    return _get_int(env, name, 0)


def _get_optional_float(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = _get(env, name, "")
    if not raw:
        return None
    return _get_float(env, name, 0.0)


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(env, name, "true" if default else "false").lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got '{raw}'")


@dataclass(frozen=True)
class IngestionSettings:
    """Immutable engine settings."""

    # Storage
    storage_path: str = "./data"
    compression_level: int = 6
    query_limit: int = 1000

    # Scheduler
    tick_interval_seconds: float = 60.0
    max_concurrent_tasks: int = 10
    task_timeout_seconds: Optional[float] = None
    validate_connections: bool = True
    max_retries: Optional[int] = None
    retry_backoff_seconds: float = 300.0
    retry_backoff_multiplier: float = 1.0
    retry_max_backoff_seconds: float = 21600.0
    health_failure_threshold: int = 3

    # Metadata index
    index_backend: str = "postgres"
    postgres_dsn: Optional[str] = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "envdata"
    postgres_user: str = "envdata"
    postgres_password: str = "envdata"
    postgres_min_pool: int = 2
    postgres_max_pool: int = 10

    # Logging
    log_level: str = "INFO"
    log_json: bool = True
    log_file: Optional[str] = None

    def __post_init__(self):
        if not 1 <= self.compression_level <= 9:
            raise ConfigurationError(
                f"Compression level must be between 1 and 9, got {self.compression_level}"
            )
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError("Tick interval must be positive")
        if self.max_concurrent_tasks < 1:
            raise ConfigurationError("Max concurrent tasks must be at least 1")
        if self.max_retries is not None and self.max_retries < 1:
            raise ConfigurationError("Max retries must be at least 1")
        if self.retry_backoff_seconds < 0 or self.retry_max_backoff_seconds < 0:
            raise ConfigurationError("Retry backoff must not be negative")
        if self.retry_backoff_multiplier < 1.0:
            raise ConfigurationError("Retry backoff multiplier must be at least 1.0")
        if self.index_backend not in INDEX_BACKENDS:
            raise ConfigurationError(
                f"Index backend must be one of {', '.join(INDEX_BACKENDS)}, "
                f"got '{self.index_backend}'"
            )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff=timedelta(seconds=self.retry_backoff_seconds),
            backoff_multiplier=self.retry_backoff_multiplier,
            max_backoff=timedelta(seconds=self.retry_max_backoff_seconds),
        )

    @classmethod
    def from_env(
        cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True
    ) -> "IngestionSettings":
        """
        Build settings from environment variables.

        Args:
            env: Variables to read, ``os.environ`` if omitted
            dotenv: Load a ``.env`` file found from the working directory first

        Raises:
            ConfigurationError: If a value is malformed or out of range
        """
        if env is None:
            if dotenv:
                load_dotenv(find_dotenv(usecwd=True))
            env = os.environ

        return cls(
            storage_path=_get(env, "ENVDATA_STORAGE_PATH", "./data"),
            compression_level=_get_int(env, "ENVDATA_COMPRESSION_LEVEL", 6),
            query_limit=_get_int(env, "ENVDATA_QUERY_LIMIT", 1000),
            tick_interval_seconds=_get_float(env, "ENVDATA_TICK_INTERVAL", 60.0),
            max_concurrent_tasks=_get_int(env, "ENVDATA_MAX_CONCURRENT_TASKS", 10),
            task_timeout_seconds=_get_optional_float(env, "ENVDATA_TASK_TIMEOUT"),
            validate_connections=_get_bool(env, "ENVDATA_VALIDATE_CONNECTIONS", True),
            max_retries=_get_optional_int(env, "ENVDATA_MAX_RETRIES"),
            retry_backoff_seconds=_get_float(env, "ENVDATA_RETRY_BACKOFF", 300.0),
            retry_backoff_multiplier=_get_float(env, "ENVDATA_RETRY_BACKOFF_MULTIPLIER", 1.0),
            retry_max_backoff_seconds=_get_float(env, "ENVDATA_RETRY_MAX_BACKOFF", 21600.0),
            health_failure_threshold=_get_int(env, "ENVDATA_HEALTH_FAILURE_THRESHOLD", 3),
            index_backend=_get(env, "ENVDATA_INDEX_BACKEND", "postgres").lower(),
            postgres_dsn=_get(env, "POSTGRES_DSN", "") or None,
            postgres_host=_get(env, "POSTGRES_HOST", "localhost"),
            postgres_port=_get_int(env, "POSTGRES_PORT", 5432),
            postgres_db=_get(env, "POSTGRES_DB", "envdata"),
            postgres_user=_get(env, "POSTGRES_USER", "envdata"),
            postgres_password=_get(env, "POSTGRES_PASSWORD", "envdata"),
            postgres_min_pool=_get_int(env, "POSTGRES_MIN_POOL", 2),
            postgres_max_pool=_get_int(env, "POSTGRES_MAX_POOL", 10),
            log_level=_get(env, "LOG_LEVEL", "INFO").upper(),
            log_json=_get_bool(env, "LOG_JSON", True),
            log_file=_get(env, "LOG_FILE", "") or None,
        )

"""
Health tracking for data sources.

The scheduler reports every execution outcome here. A source is considered
unhealthy once it has failed ``failure_threshold`` times in a row.
"""

import asyncio
import logging
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional
from uuid import UUID

from envdata_ingest.types import SourceHealth, utc_now

logger = logging.getLogger(__name__)


class SourceHealthTracker:
    """
    Tracks per-source execution outcomes.

    This class monitors source health by tracking:
    - Successful and failed executions
    - Last run and last success times
    - Consecutive failure counts
    - Success rate over all runs
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        max_history_size: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the health tracker.

        Args:
            failure_threshold: Consecutive failures before a source is unhealthy
            max_history_size: Snapshots kept per source
            clock: Source of the current time
        """
        self.failure_threshold = failure_threshold
        self.clock = clock

        self._health: Dict[UUID, SourceHealth] = {}
        self._history: Dict[UUID, Deque[SourceHealth]] = defaultdict(
            lambda: deque(maxlen=max_history_size)
        )
        self._lock = asyncio.Lock()

    def _get_or_create(self, source_id: UUID) -> SourceHealth:
        health = self._health.get(source_id)
        if health is None:
            health = SourceHealth(source_id=source_id)
            self._health[source_id] = health
        return health

    @staticmethod
    def _update_rate(health: SourceHealth) -> None:
        successes = health.total_runs - health.total_failures
        health.success_rate = successes / health.total_runs if health.total_runs else 1.0

    async def record_success(self, source_id: UUID) -> SourceHealth:
        """Record a successful execution and reset the failure streak."""
        async with self._lock:
            health = self._get_or_create(source_id)
            now = self.clock()
            health.last_run_at = now
            health.last_success_at = now
            health.consecutive_failures = 0
            health.total_runs += 1
            health.is_healthy = True
            self._update_rate(health)
            self._history[source_id].append(health.model_copy())
            return health.model_copy()

    async def record_failure(self, source_id: UUID, error: str) -> SourceHealth:
        """Record a failed execution."""
        async with self._lock:
            health = self._get_or_create(source_id)
            health.last_run_at = self.clock()
            health.last_error = error
            health.consecutive_failures += 1
            health.total_runs += 1
            health.total_failures += 1
            health.is_healthy = health.consecutive_failures < self.failure_threshold
            self._update_rate(health)
            self._history[source_id].append(health.model_copy())

        if not health.is_healthy:
            logger.warning(
                f"Source {source_id} unhealthy after "
                f"{health.consecutive_failures} consecutive failures"
            )
        return health.model_copy()

    async def get_health(self, source_id: UUID) -> SourceHealth:
        """
        Current health of a source.

        Sources that never ran are reported healthy with zero runs.
        """
        async with self._lock:
            health = self._health.get(source_id)
            return health.model_copy() if health else SourceHealth(source_id=source_id)

    async def get_history(self, source_id: UUID, hours: int = 24) -> List[SourceHealth]:
        """Snapshots recorded within the last ``hours``."""
        cutoff = self.clock() - timedelta(hours=hours)
        async with self._lock:
            return [
                snapshot
                for snapshot in self._history.get(source_id, ())
                if snapshot.last_run_at and snapshot.last_run_at >= cutoff
            ]

    async def reset(self, source_id: UUID) -> bool:
        """
        Clear the health record of a source.

        Returns:
            True if the source had a record
        """
        async with self._lock:
            existed = self._health.pop(source_id, None) is not None
            self._history.pop(source_id, None)

        if existed:
            logger.info(f"Health record reset for source {source_id}")
        return existed

    def get_unhealthy_sources(self) -> List[UUID]:
        """Ids of sources currently over the failure threshold."""
        return [
            source_id
            for source_id, health in self._health.items()
            if not health.is_healthy
        ]

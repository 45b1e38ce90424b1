"""
Ingestion scheduler.

This module owns one ScheduledTask per active source and drives them with
a single periodic tick, using APScheduler for the wake-up loop. Each tick
scans the task table, dispatches due tasks concurrently through the
collector registry into the storage engine, and applies the retry state
machine to the outcome.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
from uuid import UUID

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from envdata_ingest.ingestion.base import CollectorError, CollectorRegistry, NotFoundError
from envdata_ingest.ingestion.health import SourceHealthTracker
from envdata_ingest.ingestion.sources import SourceRegistry
from envdata_ingest.observability.logging import log_context
from envdata_ingest.observability.metrics import (
    records_collected_counter,
    scheduled_tasks_gauge,
    task_duration,
    task_execution_counter,
    task_exhausted_counter,
    task_retry_counter,
)
from envdata_ingest.storage.engine import DataStorage
from envdata_ingest.types import (
    DataFileMetadata,
    DataSource,
    IngestionStatus,
    RawDataRecord,
    ScheduledTask,
    SchedulerStats,
    TaskResult,
    TaskStatus,
    UpdateFrequency,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TICK_JOB_ID = "ingestion_tick"


# ============================================================================
# Schedule Tables
# ============================================================================


_FREQUENCY_OFFSETS: Dict[UpdateFrequency, timedelta] = {
    UpdateFrequency.REAL_TIME: timedelta(minutes=1),
    UpdateFrequency.HIGH_FREQUENCY: timedelta(minutes=15),
    UpdateFrequency.HOURLY: timedelta(hours=1),
    UpdateFrequency.THREE_HOURLY: timedelta(hours=3),
    UpdateFrequency.SIX_HOURLY: timedelta(hours=6),
    UpdateFrequency.DAILY: timedelta(days=1),
    UpdateFrequency.WEEKLY: timedelta(days=7),
    UpdateFrequency.MONTHLY: timedelta(days=30),
    UpdateFrequency.SEASONAL: timedelta(days=90),
    UpdateFrequency.ANNUAL: timedelta(days=365),
}

DEFAULT_OFFSET = timedelta(days=1)

_FREQUENCY_MAX_RETRIES: Dict[UpdateFrequency, int] = {
    UpdateFrequency.REAL_TIME: 5,
    UpdateFrequency.HIGH_FREQUENCY: 4,
    UpdateFrequency.HOURLY: 3,
    UpdateFrequency.THREE_HOURLY: 3,
    UpdateFrequency.SIX_HOURLY: 2,
    UpdateFrequency.DAILY: 2,
    UpdateFrequency.IRREGULAR: 2,
    UpdateFrequency.WEEKLY: 1,
    UpdateFrequency.MONTHLY: 1,
    UpdateFrequency.SEASONAL: 1,
    UpdateFrequency.ANNUAL: 1,
}


def frequency_offset(frequency: UpdateFrequency) -> timedelta:
    """
    Interval between successful runs for an update frequency.

    Irregular and unknown frequencies fall back to one day.
    """
    return _FREQUENCY_OFFSETS.get(frequency, DEFAULT_OFFSET)


def max_retries_for_frequency(frequency: UpdateFrequency) -> int:
    """Default failed attempts allowed before a task is marked Failed."""
    return _FREQUENCY_MAX_RETRIES.get(frequency, 2)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry behaviour of failed tasks.

    Attributes:
        max_retries: Failed attempts before Failed; None derives it from the
            source's update frequency
        backoff: Delay before the first retry
        backoff_multiplier: Growth factor per retry, 1.0 keeps the delay fixed
        max_backoff: Upper bound on any single delay
    """

    max_retries: Optional[int] = None
    backoff: timedelta = timedelta(minutes=5)
    backoff_multiplier: float = 1.0
    max_backoff: timedelta = timedelta(hours=6)

    def __post_init__(self):
        if self.max_retries is not None and self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.backoff_multiplier < 1.0:
            raise ValueError(
                f"backoff_multiplier must be >= 1.0, got {self.backoff_multiplier}"
            )

    def max_retries_for(self, frequency: UpdateFrequency) -> int:
        if self.max_retries is not None:
            return self.max_retries
        return max_retries_for_frequency(frequency)

    def delay(self, retry_count: int) -> timedelta:
        """Delay before the retry following failure number ``retry_count``."""
        delay = self.backoff * (self.backoff_multiplier ** max(retry_count - 1, 0))
        return min(delay, self.max_backoff)


# ============================================================================
# Scheduler
# ============================================================================


class IngestionScheduler:
    """
    Tick-driven scheduler for source collection tasks.

    This class handles:
    - The task table, one ScheduledTask per active source
    - Due-task dispatch bounded by ``max_concurrent``
    - At most one execution in flight per source
    - Retry and backoff transitions
    - Execution statistics and health tracking

    Args:
        sources: Source registry
        collectors: Collector registry
        storage: Storage engine receiving collected records
        health: Optional health tracker, one is created if omitted
        retry_policy: Retry behaviour, fixed five minute backoff by default
        max_concurrent: Maximum tasks executing at once
        tick_interval: Seconds between ticks of the periodic loop
        task_timeout: Optional seconds allowed for one collect_data call
        validate_connections: Check the provider before each collection
        clock: Source of the current time
    """

    def __init__(
        self,
        sources: SourceRegistry,
        collectors: CollectorRegistry,
        storage: DataStorage,
        health: Optional[SourceHealthTracker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrent: int = 10,
        tick_interval: float = 60.0,
        task_timeout: Optional[float] = None,
        validate_connections: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")

        self.sources = sources
        self.collectors = collectors
        self.storage = storage
        self.health = health or SourceHealthTracker(clock=clock)
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrent = max_concurrent
        self.tick_interval = tick_interval
        self.task_timeout = task_timeout
        self.validate_connections = validate_connections
        self.clock = clock

        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)

        self._tasks: Dict[UUID, ScheduledTask] = {}
        self._tasks_lock = asyncio.Lock()
        self._source_locks: Dict[UUID, asyncio.Lock] = {}
        self._executions: Dict[UUID, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(max_concurrent)

        self._stats = SchedulerStats()
        self._total_execution_seconds = 0.0

        logger.info(
            f"Scheduler initialized (max_concurrent={max_concurrent}, "
            f"tick_interval={tick_interval}s)"
        )

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.scheduler.running

    async def start(self) -> None:
        """Arm the periodic tick job. The first tick runs immediately."""
        if self.scheduler.running:
            return

        self.scheduler.add_job(
            self._periodic_tick,
            trigger=IntervalTrigger(seconds=self.tick_interval),
            id=TICK_JOB_ID,
            name="Ingestion scheduler tick",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.start()
        self._stats.started_at = self.clock()
        logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the periodic loop. Executions already in flight finish normally."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    # ------------------------------------------------------------------------
    # Task Table
    # ------------------------------------------------------------------------

    def _new_task(self, source: DataSource, now: datetime) -> ScheduledTask:
        return ScheduledTask(
            source_id=source.id,
            next_execution=now + frequency_offset(source.update_frequency),
            frequency=source.update_frequency,
            priority=source.priority,
            max_retries=self.retry_policy.max_retries_for(source.update_frequency),
        )

    async def initialize_tasks(
        self, sources: Sequence[DataSource], now: Optional[datetime] = None
    ) -> int:
        """
        Create tasks for active sources that do not have one yet.

        Existing tasks keep their state, except that a Failed task whose
        source is active again is resumed.

        Returns:
            Number of tasks created
        """
        now = now or self.clock()
        created = 0
        async with self._tasks_lock:
            for source in sources:
                if not source.is_active:
                    continue
                task = self._tasks.get(source.id)
                if task is not None:
                    self._resume_if_failed(task, source, now)
                    continue
                self._tasks[source.id] = self._new_task(source, now)
                created += 1

        self._refresh_task_gauges()
        logger.info(f"Initialized {created} scheduled task(s)")
        return created

    async def add_source(
        self, source: DataSource, now: Optional[datetime] = None
    ) -> Optional[ScheduledTask]:
        """
        Create or refresh the task of a source.

        An existing task keeps its schedule and retry state but picks up the
        source's current frequency and priority. A Failed task is resumed
        and becomes due immediately.

        Returns:
            A copy of the task, or None if the source is not active
        """
        if not source.is_active:
            return None

        now = now or self.clock()
        async with self._tasks_lock:
            task = self._tasks.get(source.id)
            if task is None:
                task = self._new_task(source, now)
                self._tasks[source.id] = task
                logger.info(
                    f"Scheduled source {source.name}, first run at {task.next_execution}"
                )
            else:
                task.frequency = source.update_frequency
                task.priority = source.priority
                task.max_retries = self.retry_policy.max_retries_for(source.update_frequency)
                self._resume_if_failed(task, source, now)
            copy = task.model_copy()

        self._refresh_task_gauges()
        return copy

    async def remove_source(self, source_id: UUID) -> bool:
        """Drop the task of a source. An execution in flight is not cancelled."""
        async with self._tasks_lock:
            removed = self._tasks.pop(source_id, None) is not None

        if removed:
            self._refresh_task_gauges()
            logger.info(f"Unscheduled source {source_id}")
        return removed

    async def force_collection(self, source_id: UUID) -> ScheduledTask:
        """
        Make a source due immediately.

        Resets the retry counter and reactivates the source. This is how a
        Failed task is resumed.

        Raises:
            NotFoundError: If the source is unknown
        """
        source = await self.sources.get(source_id)
        if source is None:
            raise NotFoundError(f"Data source {source_id} not found")

        if not source.is_active:
            source = await self.sources.update_status(source_id, IngestionStatus.ACTIVE)

        now = self.clock()
        async with self._tasks_lock:
            task = self._tasks.get(source_id)
            if task is None:
                task = self._new_task(source, now)
                self._tasks[source_id] = task
            self._reset_task(task, now)
            copy = task.model_copy()

        self._refresh_task_gauges()
        logger.info(f"Forced collection for source {source.name}")
        return copy

    @staticmethod
    def _reset_task(task: ScheduledTask, now: datetime) -> None:
        task.retry_count = 0
        task.status = TaskStatus.SCHEDULED
        task.next_execution = now

    def _resume_if_failed(self, task: ScheduledTask, source: DataSource, now: datetime) -> None:
        if task.status == TaskStatus.FAILED:
            self._reset_task(task, now)
            logger.info(f"Resumed failed task of reactivated source {source.name}")

    async def get_task(self, source_id: UUID) -> Optional[ScheduledTask]:
        async with self._tasks_lock:
            task = self._tasks.get(source_id)
            return task.model_copy() if task else None

    async def list_tasks(self) -> List[ScheduledTask]:
        """All tasks, earliest next execution first."""
        async with self._tasks_lock:
            tasks = [t.model_copy() for t in self._tasks.values()]
        tasks.sort(key=lambda t: (t.next_execution, -t.priority))
        return tasks

    async def get_stats(self) -> SchedulerStats:
        """Execution statistics plus current source and task counts."""
        counts = await self.sources.count_by_status()
        stats = self._stats.model_copy()
        stats.active_sources = counts.get(IngestionStatus.ACTIVE, 0)
        stats.error_sources = counts.get(IngestionStatus.ERROR, 0)
        stats.scheduled_tasks = len(self._tasks)
        return stats

    def _refresh_task_gauges(self) -> None:
        counts = {status: 0 for status in TaskStatus}
        for task in self._tasks.values():
            counts[task.status] += 1
        for status, count in counts.items():
            scheduled_tasks_gauge.labels(status=status.value).set(count)

    # ------------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------------

    async def tick(
        self, now: Optional[datetime] = None, wait: bool = True
    ) -> List[TaskResult]:
        """
        Run every task that is due at ``now``.

        Due tasks are dispatched highest priority first and run concurrently
        up to ``max_concurrent``. A failing or hung task never affects the others.

        Args:
            now: Tick time, the clock is read if omitted
            wait: Wait for the executions and return their results. With
                False each execution runs as a background task and the tick
                returns at once; a source with an execution still in flight
                is not dispatched again.

        Returns:
            One result per dispatched task, empty when ``wait`` is False
        """
        now = now or self.clock()

        async with self._tasks_lock:
            due = [task.model_copy() for task in self._tasks.values() if task.is_due(now)]

        if not due:
            logger.debug("Tick: no tasks due")
            return []

        due.sort(key=lambda t: (-t.priority, t.next_execution))
        logger.info(f"Tick: {len(due)} task(s) due")

        if not wait:
            for task in due:
                if task.source_id not in self._executions:
                    self._spawn_execution(task, now)
            return []

        results = await asyncio.gather(*(self._run_task(task, now) for task in due))

        self._refresh_task_gauges()
        return list(results)

    async def _periodic_tick(self) -> None:
        await self.tick(wait=False)

    def _spawn_execution(self, snapshot: ScheduledTask, now: datetime) -> None:
        execution = asyncio.create_task(
            self._run_task(snapshot, now), name=f"ingest-{snapshot.source_id}"
        )
        self._executions[snapshot.source_id] = execution
        execution.add_done_callback(
            functools.partial(self._execution_done, snapshot.source_id)
        )

    def _execution_done(self, source_id: UUID, execution: asyncio.Task) -> None:
        if self._executions.get(source_id) is execution:
            del self._executions[source_id]
        self._refresh_task_gauges()

        if execution.cancelled():
            logger.warning(f"Execution for source {source_id} was cancelled")
            return
        error = execution.exception()
        if error is not None:
            logger.error(
                f"Execution for source {source_id} raised: {error}", exc_info=error
            )

    @property
    def executions_in_flight(self) -> int:
        """Background executions started by the periodic loop and not yet finished."""
        return len(self._executions)

    async def join(self) -> None:
        """Wait for every background execution to finish."""
        while self._executions:
            await asyncio.wait(list(self._executions.values()))

    def _source_lock(self, source_id: UUID) -> asyncio.Lock:
        lock = self._source_locks.get(source_id)
        if lock is None:
            lock = asyncio.Lock()
            self._source_locks[source_id] = lock
        return lock

    async def run_exclusive(
        self, source_id: UUID, operation: Callable[[], Awaitable[T]]
    ) -> T:
        """
        Run ``operation`` while holding the execution lock of a source.

        Waits for any scheduled execution of the same source to finish.
        """
        async with self._source_lock(source_id):
            return await operation()

    async def _run_task(self, snapshot: ScheduledTask, now: datetime) -> TaskResult:
        async with self._semaphore:
            lock = self._source_lock(snapshot.source_id)
            if lock.locked():
                logger.info(f"Source {snapshot.source_id} already executing, skipping")
                return TaskResult(
                    task_id=snapshot.id,
                    source_id=snapshot.source_id,
                    success=False,
                    skipped=True,
                    error="Execution already in progress",
                )

            async with lock:
                try:
                    return await self._execute(snapshot, now)
                except Exception as e:
                    # Catch-all for any unexpected errors
                    logger.error(
                        f"Unexpected error executing task {snapshot.id}: {e}", exc_info=True
                    )
                    return TaskResult(
                        task_id=snapshot.id,
                        source_id=snapshot.source_id,
                        success=False,
                        error=f"Unexpected error: {e}",
                    )

    async def _claim(self, source_id: UUID, now: datetime) -> Optional[ScheduledTask]:
        """Move a still-due task to Running, or return None."""
        async with self._tasks_lock:
            task = self._tasks.get(source_id)
            if task is None or not task.is_due(now):
                return None
            task.status = TaskStatus.RUNNING
            return task

    async def _execute(self, snapshot: ScheduledTask, now: datetime) -> TaskResult:
        source = await self.sources.get(snapshot.source_id)
        if source is None or not source.is_active:
            await self.remove_source(snapshot.source_id)
            return TaskResult(
                task_id=snapshot.id,
                source_id=snapshot.source_id,
                success=False,
                skipped=True,
                error="Source is no longer active",
            )

        task = await self._claim(source.id, now)
        if task is None:
            return TaskResult(
                task_id=snapshot.id,
                source_id=snapshot.source_id,
                success=False,
                skipped=True,
                error="Task is no longer due",
            )

        category = source.category.value
        with log_context(source_id=str(source.id), task_id=str(task.id)):
            logger.info(f"Executing task for source {source.name}")
            started = time.monotonic()

            try:
                records, files = await self.collect_once(source)
            except Exception as e:
                elapsed = time.monotonic() - started
                error = self._describe_error(e)
                logger.error(f"Collection from {source.name} failed: {error}")
                await self._handle_failure(task, source, error, elapsed)
                task_duration.labels(category=category).observe(elapsed)
                return TaskResult(
                    task_id=task.id,
                    source_id=source.id,
                    success=False,
                    execution_seconds=elapsed,
                    error=error,
                )

            elapsed = time.monotonic() - started
            data_volume = sum(f.file_size for f in files)
            await self._handle_success(task, source, len(records), data_volume, elapsed)

        task_duration.labels(category=category).observe(elapsed)
        records_collected_counter.labels(category=category).inc(len(records))

        return TaskResult(
            task_id=task.id,
            source_id=source.id,
            success=True,
            records_collected=len(records),
            data_volume=data_volume,
            execution_seconds=elapsed,
        )

    def _describe_error(self, error: Exception) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"Collection timed out after {self.task_timeout}s"
        return str(error) or type(error).__name__

    async def collect_once(
        self, source: DataSource
    ) -> Tuple[List[RawDataRecord], List[DataFileMetadata]]:
        """
        Collect from one source and store the result.

        Does not take the source lock and does not touch the task table;
        callers outside the scheduler wrap it in :meth:`run_exclusive`.

        Raises:
            ConfigurationError: If no collector serves the source category
            CollectorError: If validation or collection fails
            StorageError: If the records cannot be stored
        """
        collector = self.collectors.get(source.category)

        if self.validate_connections and not await collector.validate_connection(source):
            raise CollectorError(
                f"Connection validation failed for {source.name}", source_id=source.id
            )

        if self.task_timeout is not None:
            records = await asyncio.wait_for(
                collector.collect_data(source), timeout=self.task_timeout
            )
        else:
            records = await collector.collect_data(source)

        accepted = [r for r in records if r.source_id == source.id]
        if len(accepted) != len(records):
            logger.warning(
                f"Dropped {len(records) - len(accepted)} record(s) from {source.name} "
                f"carrying a different source id"
            )

        files = await self.storage.store_batch(accepted) if accepted else []
        logger.info(
            f"Collected {len(accepted)} records from {source.name} into {len(files)} file(s)"
        )
        return accepted, files

    # ------------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------------

    async def _handle_success(
        self,
        task: ScheduledTask,
        source: DataSource,
        records_count: int,
        data_volume: int,
        elapsed: float,
    ) -> None:
        completion = self.clock()

        async with self._tasks_lock:
            task.status = TaskStatus.COMPLETED
            task.retry_count = 0
            task.consecutive_failures = 0
            task.last_error = None
            task.last_success = completion
            task.next_execution = completion + frequency_offset(task.frequency)
            task.status = TaskStatus.SCHEDULED

        await self.sources.mark_ingested(source.id, completion)
        await self.health.record_success(source.id)

        self._record_execution(elapsed)
        self._stats.successful_tasks += 1
        self._stats.records_processed += records_count
        self._stats.data_volume_collected += data_volume
        self._stats.last_collection_time = completion
        task_execution_counter.labels(category=source.category.value, status="success").inc()

        logger.info(
            f"Task for {source.name} succeeded, next run at {task.next_execution}"
        )

    async def _handle_failure(
        self, task: ScheduledTask, source: DataSource, error: str, elapsed: float
    ) -> None:
        now = self.clock()

        async with self._tasks_lock:
            task.retry_count += 1
            task.consecutive_failures += 1
            task.last_error = error
            exhausted = task.retry_count >= task.max_retries
            if exhausted:
                task.status = TaskStatus.FAILED
            else:
                task.status = TaskStatus.RETRYING
                task.next_execution = now + self.retry_policy.delay(task.retry_count)

        await self.health.record_failure(source.id, error)

        self._record_execution(elapsed)
        self._stats.failed_tasks += 1
        category = source.category.value
        task_execution_counter.labels(category=category, status="failure").inc()

        if exhausted:
            task_exhausted_counter.labels(category=category).inc()
            await self.sources.update_status(source.id, IngestionStatus.ERROR)
            logger.error(
                f"Task for {source.name} failed after {task.retry_count} attempt(s), "
                f"source marked as error"
            )
        else:
            task_retry_counter.labels(category=category).inc()
            logger.warning(
                f"Task for {source.name} failed (attempt {task.retry_count}/"
                f"{task.max_retries}), retrying at {task.next_execution}"
            )

    def _record_execution(self, elapsed: float) -> None:
        self._stats.total_tasks += 1
        self._total_execution_seconds += elapsed
        self._stats.average_execution_seconds = (
            self._total_execution_seconds / self._stats.total_tasks
        )

"""
Unit tests for the ingestion scheduler.

Tests cover:
- Frequency offset and retry tables
- Task state transitions on success and failure
- Retry bound and the Failed state
- Failure isolation within a tick
- At most one execution in flight per source
- Resuming Failed tasks
- Background dispatch from the periodic loop
- Periodic loop start and stop
"""

import asyncio
from datetime import timedelta

import pytest

from envdata_ingest.ingestion.base import CollectorRegistry, NotFoundError
from envdata_ingest.ingestion.scheduler import (
    TICK_JOB_ID,
    IngestionScheduler,
    RetryPolicy,
    frequency_offset,
    max_retries_for_frequency,
)
from envdata_ingest.ingestion.sources import SourceRegistry
from envdata_ingest.storage.engine import DataStorage
from envdata_ingest.storage.memory import InMemoryMetadataIndex
from envdata_ingest.types import (
    DataSourceCategory,
    IngestionStatus,
    TaskStatus,
    UpdateFrequency,
    utc_now,
)

from tests.fixtures import T0, FakeClock, create_sample_source
from tests.mocks.collectors import BrokenCollector, FlakyCollector, MockCollector
from tests.mocks.storage import RecordingStorage


# ============================================================================
# Helpers
# ============================================================================


async def build_scheduler(
    tmp_path,
    sources,
    collectors,
    clock,
    storage_cls=DataStorage,
    **kwargs,
):
    """Create a scheduler over an in-memory index with tasks for ``sources``."""
    registry = SourceRegistry()
    for source in sources:
        await registry.register(source)

    storage = storage_cls(tmp_path, InMemoryMetadataIndex())
    await storage.initialize()

    scheduler = IngestionScheduler(
        sources=registry,
        collectors=CollectorRegistry(collectors),
        storage=storage,
        clock=clock,
        **kwargs,
    )
    await scheduler.initialize_tasks(await registry.list_active(), now=clock())
    return scheduler, registry, storage


# ============================================================================
# Schedule Tables
# ============================================================================


@pytest.mark.parametrize(
    "frequency,expected",
    [
        (UpdateFrequency.REAL_TIME, timedelta(minutes=1)),
        (UpdateFrequency.HIGH_FREQUENCY, timedelta(minutes=15)),
        (UpdateFrequency.HOURLY, timedelta(hours=1)),
        (UpdateFrequency.THREE_HOURLY, timedelta(hours=3)),
        (UpdateFrequency.SIX_HOURLY, timedelta(hours=6)),
        (UpdateFrequency.DAILY, timedelta(hours=24)),
        (UpdateFrequency.WEEKLY, timedelta(days=7)),
        (UpdateFrequency.MONTHLY, timedelta(days=30)),
        (UpdateFrequency.SEASONAL, timedelta(days=90)),
        (UpdateFrequency.ANNUAL, timedelta(days=365)),
        (UpdateFrequency.IRREGULAR, timedelta(hours=24)),
    ],
)
def test_frequency_offset(frequency, expected):
    """Test every frequency maps to its fixed interval."""
    assert frequency_offset(frequency) == expected
    assert frequency_offset(frequency) == frequency_offset(frequency)


def test_max_retries_for_frequency():
    """Test that frequent sources get more retries than rare ones."""
    assert max_retries_for_frequency(UpdateFrequency.REAL_TIME) == 5
    assert max_retries_for_frequency(UpdateFrequency.HIGH_FREQUENCY) == 4
    assert max_retries_for_frequency(UpdateFrequency.HOURLY) == 3
    assert max_retries_for_frequency(UpdateFrequency.DAILY) == 2
    assert max_retries_for_frequency(UpdateFrequency.IRREGULAR) == 2
    assert max_retries_for_frequency(UpdateFrequency.ANNUAL) == 1


def test_retry_policy_fixed_backoff():
    """Test the default policy waits five minutes before every retry."""
    policy = RetryPolicy()

    assert policy.delay(1) == timedelta(minutes=5)
    assert policy.delay(4) == timedelta(minutes=5)
    assert policy.max_retries_for(UpdateFrequency.HOURLY) == 3


def test_retry_policy_exponential_backoff_is_capped():
    """Test multiplier growth and the max_backoff cap."""
    policy = RetryPolicy(
        max_retries=4,
        backoff=timedelta(minutes=5),
        backoff_multiplier=2.0,
        max_backoff=timedelta(minutes=15),
    )

    assert policy.delay(1) == timedelta(minutes=5)
    assert policy.delay(2) == timedelta(minutes=10)
    assert policy.delay(3) == timedelta(minutes=15)
    assert policy.max_retries_for(UpdateFrequency.ANNUAL) == 4


def test_retry_policy_rejects_invalid_values():
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=0)
    with pytest.raises(ValueError):
        RetryPolicy(backoff_multiplier=0.5)


# ============================================================================
# Task Table
# ============================================================================


@pytest.mark.asyncio
async def test_initialize_tasks_only_for_active_sources(tmp_path):
    """Test that inactive sources get no task."""
    clock = FakeClock()
    active = create_sample_source(name="Active", frequency=UpdateFrequency.DAILY)
    inactive = create_sample_source(name="Inactive", status=IngestionStatus.INACTIVE)

    scheduler, _, _ = await build_scheduler(
        tmp_path,
        [active, inactive],
        {DataSourceCategory.WEATHER_STATIONS: MockCollector(clock=clock)},
        clock,
    )

    tasks = await scheduler.list_tasks()
    assert [t.source_id for t in tasks] == [active.id]
    assert tasks[0].next_execution == T0 + timedelta(hours=24)
    assert tasks[0].max_retries == 2
    assert tasks[0].status == TaskStatus.SCHEDULED


@pytest.mark.asyncio
async def test_initialize_tasks_keeps_existing_state(tmp_path):
    clock = FakeClock()
    source = create_sample_source()
    scheduler, registry, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: MockCollector()}, clock
    )
    before = await scheduler.get_task(source.id)

    clock.advance(minutes=30)
    created = await scheduler.initialize_tasks(await registry.list_active())

    assert created == 0
    after = await scheduler.get_task(source.id)
    assert after.id == before.id
    assert after.next_execution == before.next_execution


@pytest.mark.asyncio
async def test_add_and_remove_source(tmp_path):
    clock = FakeClock()
    scheduler, registry, _ = await build_scheduler(
        tmp_path, [], {DataSourceCategory.WEATHER_STATIONS: MockCollector()}, clock
    )

    inactive = create_sample_source(status=IngestionStatus.MAINTENANCE)
    assert await scheduler.add_source(inactive) is None

    source = create_sample_source(frequency=UpdateFrequency.SIX_HOURLY, priority=7)
    task = await scheduler.add_source(source)
    assert task.next_execution == T0 + timedelta(hours=6)
    assert task.priority == 7

    source.priority = 9
    updated = await scheduler.add_source(source)
    assert updated.id == task.id
    assert updated.priority == 9

    assert await scheduler.remove_source(source.id) is True
    assert await scheduler.get_task(source.id) is None
    assert await scheduler.remove_source(source.id) is False


# ============================================================================
# Success Path
# ============================================================================


@pytest.mark.asyncio
async def test_hourly_source_runs_once_when_due(tmp_path):
    """Test an hourly source is not run early and reschedules from completion."""
    clock = FakeClock(T0)
    source = create_sample_source(frequency=UpdateFrequency.HOURLY)
    collector = MockCollector(clock=clock)

    scheduler, registry, storage = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    clock.set(T0 + timedelta(minutes=5))
    results = await scheduler.tick()
    assert results == []
    assert collector.calls == 0

    clock.set(T0 + timedelta(minutes=61))
    results = await scheduler.tick()

    assert len(results) == 1
    assert results[0].success is True
    assert results[0].records_collected == 3
    assert collector.calls == 1

    task = await scheduler.get_task(source.id)
    assert task.next_execution == T0 + timedelta(minutes=61) + timedelta(hours=1)
    assert task.status == TaskStatus.SCHEDULED
    assert task.retry_count == 0
    assert task.last_success == T0 + timedelta(minutes=61)

    stored_source = await registry.get(source.id)
    assert stored_source.last_ingestion == T0 + timedelta(minutes=61)

    stored = await storage.get_raw_data(source_id=source.id)
    assert len(stored) == 3


@pytest.mark.asyncio
async def test_next_execution_is_completion_relative(tmp_path):
    """Test the next run is measured from when collection finished."""
    clock = FakeClock(T0)

    class SlowCollector(MockCollector):
        async def collect_data(self, source):
            clock.advance(minutes=10)
            return await super().collect_data(source)

    source = create_sample_source(frequency=UpdateFrequency.HOURLY)
    scheduler, _, _ = await build_scheduler(
        tmp_path,
        [source],
        {DataSourceCategory.WEATHER_STATIONS: SlowCollector(clock=clock)},
        clock,
    )

    clock.set(T0 + timedelta(hours=1))
    await scheduler.tick()

    task = await scheduler.get_task(source.id)
    assert task.next_execution == T0 + timedelta(hours=1, minutes=10) + timedelta(hours=1)


@pytest.mark.asyncio
async def test_success_resets_retry_state(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source(frequency=UpdateFrequency.HOURLY)
    collector = FlakyCollector(failures=1, clock=clock)

    scheduler, _, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    clock.set(T0 + timedelta(hours=1))
    await scheduler.tick()
    task = await scheduler.get_task(source.id)
    assert task.status == TaskStatus.RETRYING
    assert task.retry_count == 1
    assert task.last_error == "Mock collection failure"

    clock.advance(minutes=5)
    results = await scheduler.tick()
    assert results[0].success is True

    task = await scheduler.get_task(source.id)
    assert task.status == TaskStatus.SCHEDULED
    assert task.retry_count == 0
    assert task.last_error is None


@pytest.mark.asyncio
async def test_records_for_other_sources_are_dropped(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source()
    collector = MockCollector(clock=clock, foreign_records=2)

    scheduler, _, storage = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    clock.set(T0 + timedelta(hours=1))
    results = await scheduler.tick()

    assert results[0].records_collected == 3
    stats = await storage.get_storage_stats()
    assert stats.sources_count == 1
    assert stats.total_records == 3


# ============================================================================
# Failure Path
# ============================================================================


@pytest.mark.asyncio
async def test_retry_bound_and_failed_state(tmp_path):
    """Test an always-failing source stops at max_retries and stays Failed."""
    clock = FakeClock(T0)
    source = create_sample_source(frequency=UpdateFrequency.HOURLY)
    collector = MockCollector(fail=True, clock=clock)

    scheduler, registry, _ = await build_scheduler(
        tmp_path,
        [source],
        {DataSourceCategory.WEATHER_STATIONS: collector},
        clock,
        retry_policy=RetryPolicy(max_retries=3),
    )

    clock.set(T0 + timedelta(hours=1))
    await scheduler.tick()
    task = await scheduler.get_task(source.id)
    assert task.status == TaskStatus.RETRYING
    assert task.retry_count == 1
    assert task.next_execution == T0 + timedelta(hours=1, minutes=5)

    clock.advance(minutes=5)
    await scheduler.tick()
    task = await scheduler.get_task(source.id)
    assert task.status == TaskStatus.RETRYING
    assert task.retry_count == 2

    clock.advance(minutes=5)
    await scheduler.tick()
    task = await scheduler.get_task(source.id)
    assert task.status == TaskStatus.FAILED
    assert task.retry_count == 3

    for _ in range(5):
        clock.advance(hours=2)
        assert await scheduler.tick() == []

    task = await scheduler.get_task(source.id)
    assert task.retry_count == 3
    assert task.status == TaskStatus.FAILED
    assert collector.calls == 3

    stored_source = await registry.get(source.id)
    assert stored_source.status == IngestionStatus.ERROR


@pytest.mark.asyncio
async def test_retry_not_due_before_backoff(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source(frequency=UpdateFrequency.HOURLY)
    collector = MockCollector(fail=True, clock=clock)

    scheduler, _, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    clock.set(T0 + timedelta(hours=1))
    await scheduler.tick()

    clock.advance(minutes=4)
    assert await scheduler.tick() == []
    assert collector.calls == 1


@pytest.mark.asyncio
async def test_failure_isolation(tmp_path):
    """Test a failing source does not stop another source in the same tick."""
    clock = FakeClock(T0)
    failing = create_sample_source(
        name="Failing", category=DataSourceCategory.WEATHER_STATIONS
    )
    healthy = create_sample_source(
        name="Healthy", category=DataSourceCategory.SOIL_MONITORING
    )
    broken = create_sample_source(
        name="Broken", category=DataSourceCategory.FLUX_TOWERS
    )

    scheduler, _, storage = await build_scheduler(
        tmp_path,
        [failing, healthy, broken],
        {
            DataSourceCategory.WEATHER_STATIONS: MockCollector(fail=True, clock=clock),
            DataSourceCategory.SOIL_MONITORING: MockCollector(clock=clock),
            DataSourceCategory.FLUX_TOWERS: BrokenCollector(clock=clock),
        },
        clock,
    )

    clock.set(T0 + timedelta(hours=1))
    results = await scheduler.tick()

    by_source = {r.source_id: r for r in results}
    assert len(by_source) == 3
    assert by_source[failing.id].success is False
    assert by_source[broken.id].success is False
    assert "collector bug" in by_source[broken.id].error
    assert by_source[healthy.id].success is True

    stored = await storage.get_raw_data(source_id=healthy.id)
    assert len(stored) == 3

    assert (await scheduler.get_task(broken.id)).status == TaskStatus.RETRYING


@pytest.mark.asyncio
async def test_missing_collector_is_a_task_failure(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source(category=DataSourceCategory.CROP_MONITORING)

    scheduler, _, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: MockCollector()}, clock
    )

    clock.set(T0 + timedelta(hours=1))
    results = await scheduler.tick()

    assert results[0].success is False
    assert "No collector registered" in results[0].error


@pytest.mark.asyncio
async def test_failed_connection_validation(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source()
    collector = MockCollector(connection_ok=False, clock=clock)

    scheduler, _, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    clock.set(T0 + timedelta(hours=1))
    results = await scheduler.tick()

    assert results[0].success is False
    assert "Connection validation failed" in results[0].error
    assert collector.calls == 0


@pytest.mark.asyncio
async def test_connection_validation_can_be_disabled(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source()
    collector = MockCollector(connection_ok=False, clock=clock)

    scheduler, _, _ = await build_scheduler(
        tmp_path,
        [source],
        {DataSourceCategory.WEATHER_STATIONS: collector},
        clock,
        validate_connections=False,
    )

    clock.set(T0 + timedelta(hours=1))
    results = await scheduler.tick()

    assert results[0].success is True
    assert collector.validations == 0


@pytest.mark.asyncio
async def test_task_timeout(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source()
    collector = MockCollector(delay=1.0, clock=clock)

    scheduler, _, _ = await build_scheduler(
        tmp_path,
        [source],
        {DataSourceCategory.WEATHER_STATIONS: collector},
        clock,
        task_timeout=0.05,
    )

    clock.set(T0 + timedelta(hours=1))
    results = await scheduler.tick()

    assert results[0].success is False
    assert "timed out" in results[0].error


# ============================================================================
# Dispatch
# ============================================================================


@pytest.mark.asyncio
async def test_due_tasks_dispatched_by_priority(tmp_path):
    clock = FakeClock(T0)
    low = create_sample_source(name="Low", priority=3)
    high = create_sample_source(name="High", priority=9)
    mid = create_sample_source(name="Mid", priority=6)
    collector = MockCollector(clock=clock)

    scheduler, _, _ = await build_scheduler(
        tmp_path,
        [low, high, mid],
        {DataSourceCategory.WEATHER_STATIONS: collector},
        clock,
        max_concurrent=1,
    )

    clock.set(T0 + timedelta(hours=1))
    await scheduler.tick()

    assert collector.call_order == [high.id, mid.id, low.id]


@pytest.mark.asyncio
async def test_single_flight_blocks_manual_collection(tmp_path):
    """Test a manual collection waits for the scheduled run of the same source."""
    clock = FakeClock(T0)
    source = create_sample_source()
    collector = MockCollector(clock=clock)
    collector.gate = asyncio.Event()

    scheduler, registry, storage = await build_scheduler(
        tmp_path,
        [source],
        {DataSourceCategory.WEATHER_STATIONS: collector},
        clock,
        storage_cls=RecordingStorage,
    )

    clock.set(T0 + timedelta(hours=1))
    scheduled = asyncio.create_task(scheduler.tick())
    await collector.entered.wait()

    stored_source = await registry.get(source.id)
    manual = asyncio.create_task(
        scheduler.run_exclusive(source.id, lambda: scheduler.collect_once(stored_source))
    )
    for _ in range(5):
        await asyncio.sleep(0)
    assert collector.calls == 1

    # A second tick while the task is running dispatches nothing
    assert await scheduler.tick() == []

    collector.gate.set()
    await scheduled
    await manual

    assert collector.calls == 2
    assert collector.max_in_flight[source.id] == 1
    assert storage.max_in_flight[source.id] == 1


@pytest.mark.asyncio
async def test_due_task_skipped_while_source_busy(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source()
    collector = MockCollector(clock=clock)
    collector.gate = asyncio.Event()

    scheduler, registry, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    stored_source = await registry.get(source.id)
    manual = asyncio.create_task(
        scheduler.run_exclusive(source.id, lambda: scheduler.collect_once(stored_source))
    )
    await collector.entered.wait()

    clock.set(T0 + timedelta(hours=1))
    results = await scheduler.tick()

    assert len(results) == 1
    assert results[0].skipped is True
    assert collector.calls == 1

    task = await scheduler.get_task(source.id)
    assert task.status == TaskStatus.SCHEDULED

    collector.gate.set()
    await manual

    results = await scheduler.tick()
    assert results[0].success is True


@pytest.mark.asyncio
async def test_inactive_source_task_is_dropped(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source()
    collector = MockCollector(clock=clock)

    scheduler, registry, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )
    await registry.update_status(source.id, IngestionStatus.MAINTENANCE)

    clock.set(T0 + timedelta(hours=1))
    results = await scheduler.tick()

    assert results[0].skipped is True
    assert collector.calls == 0
    assert await scheduler.get_task(source.id) is None


# ============================================================================
# Manual Intervention and Stats
# ============================================================================


@pytest.mark.asyncio
async def test_force_collection_resumes_failed_task(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source(frequency=UpdateFrequency.WEEKLY)
    collector = MockCollector(fail=True, clock=clock)

    scheduler, registry, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    clock.set(T0 + timedelta(days=7))
    await scheduler.tick()
    assert (await scheduler.get_task(source.id)).status == TaskStatus.FAILED
    assert (await registry.get(source.id)).status == IngestionStatus.ERROR

    collector.fail = False
    clock.advance(hours=1)
    task = await scheduler.force_collection(source.id)

    assert task.status == TaskStatus.SCHEDULED
    assert task.retry_count == 0
    assert task.next_execution == clock()
    assert (await registry.get(source.id)).status == IngestionStatus.ACTIVE

    results = await scheduler.tick()
    assert results[0].success is True


@pytest.mark.asyncio
async def test_force_collection_unknown_source(tmp_path):
    from uuid import uuid4

    clock = FakeClock(T0)
    scheduler, _, _ = await build_scheduler(tmp_path, [], {}, clock)

    with pytest.raises(NotFoundError):
        await scheduler.force_collection(uuid4())


async def fail_until_exhausted(scheduler, registry, clock, source):
    clock.set(T0 + timedelta(days=7))
    await scheduler.tick()
    assert (await scheduler.get_task(source.id)).status == TaskStatus.FAILED

    reactivated = await registry.get(source.id)
    assert reactivated.status == IngestionStatus.ERROR
    reactivated.status = IngestionStatus.ACTIVE
    return await registry.register(reactivated)


@pytest.mark.asyncio
async def test_reregistered_active_source_resumes_failed_task(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source(frequency=UpdateFrequency.WEEKLY)
    collector = MockCollector(fail=True, clock=clock)
    scheduler, registry, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    reactivated = await fail_until_exhausted(scheduler, registry, clock, source)
    collector.fail = False
    clock.advance(hours=1)

    task = await scheduler.add_source(reactivated)
    assert task.status == TaskStatus.SCHEDULED
    assert task.retry_count == 0
    assert task.next_execution == clock()

    results = await scheduler.tick()
    assert results[0].success is True


@pytest.mark.asyncio
async def test_initialize_tasks_resumes_failed_task_of_active_source(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source(frequency=UpdateFrequency.WEEKLY)
    collector = MockCollector(fail=True, clock=clock)
    scheduler, registry, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    await fail_until_exhausted(scheduler, registry, clock, source)

    assert await scheduler.initialize_tasks(await registry.list_active()) == 0
    task = await scheduler.get_task(source.id)
    assert task.status == TaskStatus.SCHEDULED
    assert task.retry_count == 0
    assert task.is_due(clock())


# ============================================================================
# Background Dispatch
# ============================================================================


async def wait_until(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_background_tick_returns_before_execution_finishes(tmp_path):
    clock = FakeClock(T0)
    source = create_sample_source(frequency=UpdateFrequency.HOURLY)
    collector = MockCollector(clock=clock)
    collector.gate = asyncio.Event()
    scheduler, _, _ = await build_scheduler(
        tmp_path, [source], {DataSourceCategory.WEATHER_STATIONS: collector}, clock
    )

    clock.set(T0 + timedelta(hours=1))
    assert await scheduler.tick(wait=False) == []
    await asyncio.wait_for(collector.entered.wait(), timeout=1)
    assert scheduler.executions_in_flight == 1

    assert await scheduler.tick(wait=False) == []
    assert collector.calls == 1

    collector.gate.set()
    await scheduler.join()

    assert scheduler.executions_in_flight == 0
    task = await scheduler.get_task(source.id)
    assert task.status == TaskStatus.SCHEDULED
    assert task.next_execution == T0 + timedelta(hours=2)


@pytest.mark.asyncio
async def test_hung_collector_does_not_stall_periodic_loop(tmp_path):
    """Test the real loop keeps serving other sources while one collector hangs."""
    hung = MockCollector()
    hung.gate = asyncio.Event()
    healthy = MockCollector()
    stuck_source = create_sample_source(
        name="Stuck", category=DataSourceCategory.WEATHER_STATIONS
    )
    healthy_source = create_sample_source(
        name="Healthy", category=DataSourceCategory.RESEARCH_NETWORKS
    )

    scheduler, _, _ = await build_scheduler(
        tmp_path,
        [stuck_source, healthy_source],
        {
            DataSourceCategory.WEATHER_STATIONS: hung,
            DataSourceCategory.RESEARCH_NETWORKS: healthy,
        },
        utc_now,
        tick_interval=0.05,
    )
    await scheduler.force_collection(stuck_source.id)
    await scheduler.force_collection(healthy_source.id)

    await scheduler.start()
    try:
        await asyncio.wait_for(hung.entered.wait(), timeout=3)
        await wait_until(lambda: healthy.calls == 1)
        await wait_until(lambda: scheduler.executions_in_flight == 1)

        await scheduler.force_collection(healthy_source.id)
        await wait_until(lambda: healthy.calls == 2)

        assert hung.calls == 1
        assert scheduler.executions_in_flight >= 1
    finally:
        await scheduler.stop()
        hung.gate.set()
        await scheduler.join()

    task = await scheduler.get_task(healthy_source.id)
    assert task.last_success is not None


@pytest.mark.asyncio
async def test_scheduler_stats_and_health(tmp_path):
    clock = FakeClock(T0)
    good = create_sample_source(name="Good", category=DataSourceCategory.SOIL_MONITORING)
    bad = create_sample_source(name="Bad", frequency=UpdateFrequency.ANNUAL)

    scheduler, _, _ = await build_scheduler(
        tmp_path,
        [good, bad],
        {
            DataSourceCategory.SOIL_MONITORING: MockCollector(clock=clock),
            DataSourceCategory.WEATHER_STATIONS: MockCollector(fail=True, clock=clock),
        },
        clock,
    )

    clock.set(T0 + timedelta(days=366))
    await scheduler.tick()

    stats = await scheduler.get_stats()
    assert stats.total_tasks == 2
    assert stats.successful_tasks == 1
    assert stats.failed_tasks == 1
    assert stats.records_processed == 3
    assert stats.data_volume_collected > 0
    assert stats.active_sources == 1
    assert stats.error_sources == 1
    assert stats.scheduled_tasks == 2
    assert stats.last_collection_time == T0 + timedelta(days=366)

    bad_health = await scheduler.health.get_health(bad.id)
    assert bad_health.consecutive_failures == 1
    assert bad_health.last_error == "Mock collection failure"

    good_health = await scheduler.health.get_health(good.id)
    assert good_health.total_runs == 1
    assert good_health.success_rate == 1.0


# ============================================================================
# Periodic Loop
# ============================================================================


@pytest.mark.asyncio
async def test_start_and_stop(tmp_path):
    clock = FakeClock(T0)
    scheduler, _, _ = await build_scheduler(tmp_path, [], {}, clock, tick_interval=30)

    await scheduler.start()
    try:
        assert scheduler.is_running is True
        job = scheduler.scheduler.get_job(TICK_JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True
        assert job.trigger.interval == timedelta(seconds=30)
    finally:
        await scheduler.stop()

    assert scheduler.is_running is False


def test_invalid_concurrency():
    with pytest.raises(ValueError):
        IngestionScheduler(
            sources=SourceRegistry(),
            collectors=CollectorRegistry(),
            storage=DataStorage("/tmp/unused", InMemoryMetadataIndex()),
            max_concurrent=0,
        )

"""Stuck-job monitor tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeGenerator, make_request, wait_for_terminal
from tripforge.jobqueue import InMemoryJobQueue, JobPayload
from tripforge.monitor import StuckJobMonitor
from tripforge.persistence import ProcessingStatus
from tripforge.pipeline import ProcessingPipeline
from tripforge.tasks import BackgroundTaskRunner


def _later(seconds: float):
    return lambda: datetime.now(timezone.utc) + timedelta(seconds=seconds)


def _monitor(store, generator, renderer, queue, runner, **kwargs) -> StuckJobMonitor:
    pipeline = ProcessingPipeline(store, generator, renderer)
    return StuckJobMonitor(queue, store, pipeline, runner, **kwargs)


@pytest.mark.asyncio
async def test_no_waiting_jobs_dispatches_nothing(store, generator, renderer):
    queue = InMemoryJobQueue()
    runner = BackgroundTaskRunner()
    monitor = _monitor(store, generator, renderer, queue, runner, now=_later(3600))
    itinerary = await store.create("client", make_request())

    result = await monitor.check()

    assert result.dispatched == 0
    assert result.checked == 0
    assert runner.pending == 0
    found = await store.find_by_id(itinerary.id)
    assert found.processing_status == ProcessingStatus.PENDING


@pytest.mark.asyncio
async def test_dispatches_only_old_pending_itineraries(store, generator, renderer):
    queue = InMemoryJobQueue()
    runner = BackgroundTaskRunner()
    monitor = _monitor(
        store, generator, renderer, queue, runner,
        stuck_threshold=60, now=_later(120),
    )
    stuck = await store.create("client", make_request("Lisbon"))
    claimed = await store.create("client", make_request("Porto"))
    await store.claim_for_processing(claimed.id)
    await queue.enqueue(JobPayload(itinerary_id=stuck.id))

    result = await monitor.check()

    assert result.waiting == 1
    assert result.checked == 1
    assert result.dispatched_ids == [stuck.id]
    assert monitor.last_result == result
    await runner.join(timeout=5)
    found = await wait_for_terminal(store, stuck.id)
    assert found.processing_status == ProcessingStatus.COMPLETED
    still = await store.find_by_id(claimed.id)
    assert still.processing_status == ProcessingStatus.PROCESSING


@pytest.mark.asyncio
async def test_young_itineraries_are_left_alone(store, generator, renderer):
    queue = InMemoryJobQueue()
    runner = BackgroundTaskRunner()
    monitor = _monitor(
        store, generator, renderer, queue, runner,
        stuck_threshold=60, now=_later(10),
    )
    itinerary = await store.create("client", make_request())
    await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    result = await monitor.check()

    assert result.checked == 1
    assert result.dispatched == 0
    assert generator.calls == 0


@pytest.mark.asyncio
async def test_batch_size_limits_dispatch(store, generator, renderer):
    queue = InMemoryJobQueue()
    runner = BackgroundTaskRunner()
    monitor = _monitor(
        store, generator, renderer, queue, runner,
        batch_size=2, now=_later(3600),
    )
    ids = [(await store.create("client", make_request())).id for _ in range(3)]
    await queue.enqueue(JobPayload(itinerary_id=ids[0]))

    result = await monitor.check()

    assert result.dispatched_ids == ids[:2]
    await runner.join(timeout=5)


@pytest.mark.asyncio
async def test_check_does_not_wait_for_dispatched_runs(store, renderer):
    generator = FakeGenerator(delay=0.5)
    queue = InMemoryJobQueue()
    runner = BackgroundTaskRunner()
    monitor = _monitor(store, generator, renderer, queue, runner, now=_later(3600))
    itinerary = await store.create("client", make_request())
    await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    await asyncio.wait_for(monitor.check(), timeout=0.2)

    assert runner.pending == 1
    await runner.join(timeout=5)


@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_cancels(store, generator, renderer, caplog):
    queue = InMemoryJobQueue()
    runner = BackgroundTaskRunner()
    monitor = _monitor(
        store, generator, renderer, queue, runner, check_interval=0.05
    )

    monitor.start()
    first_task = monitor._task
    monitor.start()
    assert monitor._task is first_task
    assert "already running" in caplog.text

    await asyncio.sleep(0.15)
    assert monitor.running
    assert monitor.last_result is not None

    await monitor.stop()
    assert not monitor.running
    assert monitor.status().running is False


class BrokenQueue(InMemoryJobQueue):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.depth_calls = 0

    async def depth(self):
        self.depth_calls += 1
        raise ConnectionError("broker down")


@pytest.mark.asyncio
async def test_loop_survives_failing_ticks(store, generator, renderer):
    queue = BrokenQueue()
    monitor = _monitor(
        store, generator, renderer, queue, BackgroundTaskRunner(), check_interval=0.02
    )

    monitor.start()
    await asyncio.sleep(0.15)
    assert monitor.running
    assert queue.depth_calls >= 2
    await monitor.stop()

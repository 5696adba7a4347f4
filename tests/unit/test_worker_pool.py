"""Worker pool tests."""

import asyncio

import pytest

from conftest import (
    FakeGenerator,
    FlakyFailedWriteStore,
    FlakyReadStore,
    make_request,
    wait_for_terminal,
)
from tripforge.config import QueueConfig
from tripforge.jobqueue import InMemoryJobQueue, JobPayload, JobState
from tripforge.persistence import ProcessingStatus
from tripforge.pipeline import ProcessingPipeline
from tripforge.worker import WorkerPool


async def _wait_for_job(queue, job_id, state, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        job = await queue.get_job(job_id)
        if job is not None and job.state == state:
            return job
        await asyncio.sleep(0.02)
    raise AssertionError(f"job {job_id} never reached {state.value}")


@pytest.mark.asyncio
async def test_workers_process_queued_itineraries(store, generator, renderer, queue_settings):
    queue = InMemoryJobQueue(queue_settings)
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=2)
    itineraries = [await store.create("client", make_request()) for _ in range(3)]
    job_ids = [
        await queue.enqueue(JobPayload(itinerary_id=i.id)) for i in itineraries
    ]

    await pool.start()
    try:
        for itinerary, job_id in zip(itineraries, job_ids):
            found = await wait_for_terminal(store, itinerary.id)
            assert found.processing_status == ProcessingStatus.COMPLETED
            await _wait_for_job(queue, job_id, JobState.COMPLETED)
    finally:
        assert await pool.stop(timeout=5)

    assert pool.processed == 3
    assert generator.calls == 3


@pytest.mark.asyncio
async def test_concurrency_bounds_parallel_runs(store, renderer, queue_settings):
    class CountingGenerator(FakeGenerator):
        def __init__(self):
            super().__init__(delay=0.1)
            self.active = 0
            self.peak = 0

        async def generate(self, prompt, model=None):
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                return await super().generate(prompt, model)
            finally:
                self.active -= 1

    generator = CountingGenerator()
    queue = InMemoryJobQueue(queue_settings)
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=2)
    itineraries = [await store.create("client", make_request()) for _ in range(5)]
    for itinerary in itineraries:
        await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    await pool.start()
    try:
        for itinerary in itineraries:
            await wait_for_terminal(store, itinerary.id)
    finally:
        await pool.stop(timeout=5)

    assert generator.peak == 2


@pytest.mark.asyncio
async def test_failed_run_is_reported_to_broker(store, renderer):
    generator = FakeGenerator(fail=True)
    queue = InMemoryJobQueue(QueueConfig(poll_interval=0.05, backoff_delay=0.01))
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=1)
    itinerary = await store.create("client", make_request())
    job_id = await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    await pool.start()
    try:
        job = await _wait_for_job(queue, job_id, JobState.FAILED)
    finally:
        await pool.stop(timeout=5)

    assert job.attempts_made == 1
    assert "provider unavailable" in job.failed_reason
    assert pool.failed == 1
    assert pool.processed == 0
    assert generator.calls == 1
    found = await store.find_by_id(itinerary.id)
    assert found.processing_status == ProcessingStatus.FAILED
    stats = await queue.stats()
    assert stats.failed == 1
    assert stats.completed == 0


@pytest.mark.asyncio
async def test_crash_after_claim_fails_job_and_itinerary(renderer):
    store = FlakyFailedWriteStore()
    store.write_failures = 1
    queue = InMemoryJobQueue(QueueConfig(poll_interval=0.05, backoff_delay=0.01))
    pool = WorkerPool(
        queue, ProcessingPipeline(store, FakeGenerator(fail=True), renderer), concurrency=1
    )
    itinerary = await store.create("client", make_request())
    job_id = await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    await pool.start()
    try:
        job = await _wait_for_job(queue, job_id, JobState.FAILED)
    finally:
        await pool.stop(timeout=5)

    assert job.attempts_made == 1
    found = await store.find_by_id(itinerary.id)
    assert found.processing_status == ProcessingStatus.FAILED


@pytest.mark.asyncio
async def test_crash_before_claim_is_retried(generator, renderer):
    store = FlakyReadStore()
    store.read_failures = 1
    queue = InMemoryJobQueue(QueueConfig(poll_interval=0.05, backoff_delay=0.01))
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=1)
    itinerary = await store.create("client", make_request())
    job_id = await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    await pool.start()
    try:
        job = await _wait_for_job(queue, job_id, JobState.COMPLETED)
    finally:
        await pool.stop(timeout=5)

    assert job.attempts_made == 2
    found = await store.find_by_id(itinerary.id)
    assert found.processing_status == ProcessingStatus.COMPLETED


@pytest.mark.asyncio
async def test_missing_itinerary_is_not_retried(store, generator, renderer, queue_settings):
    queue = InMemoryJobQueue(queue_settings)
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=1)
    job_id = await queue.enqueue(JobPayload(itinerary_id=999))

    await pool.start()
    try:
        job = await _wait_for_job(queue, job_id, JobState.FAILED)
    finally:
        await pool.stop(timeout=5)

    assert job.attempts_made == 1
    assert "not found" in job.failed_reason
    assert pool.failed == 1


@pytest.mark.asyncio
async def test_stop_drains_in_flight_job(store, renderer, queue_settings):
    generator = FakeGenerator(delay=0.3)
    queue = InMemoryJobQueue(queue_settings)
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=1)
    itinerary = await store.create("client", make_request())
    await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    await pool.start()
    while generator.calls == 0:
        await asyncio.sleep(0.01)
    assert await pool.stop(timeout=5)

    found = await store.find_by_id(itinerary.id)
    assert found.processing_status == ProcessingStatus.COMPLETED
    assert not pool.running


@pytest.mark.asyncio
async def test_stop_timeout_abandons_without_cancelling(store, renderer, queue_settings):
    generator = FakeGenerator(delay=0.5)
    queue = InMemoryJobQueue(queue_settings)
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=1)
    itinerary = await store.create("client", make_request())
    await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    await pool.start()
    while generator.calls == 0:
        await asyncio.sleep(0.01)
    assert not await pool.stop(timeout=0.05)

    found = await wait_for_terminal(store, itinerary.id)
    assert found.processing_status == ProcessingStatus.COMPLETED
    assert await pool.stop(timeout=5)


@pytest.mark.asyncio
async def test_start_twice_is_noop(store, generator, renderer, queue_settings):
    queue = InMemoryJobQueue(queue_settings)
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=2)

    await pool.start()
    workers = list(pool._workers)
    await pool.start()
    assert pool._workers == workers
    assert await pool.stop(timeout=5)


@pytest.mark.asyncio
async def test_run_with_lifespan(store, generator, renderer, queue_settings):
    queue = InMemoryJobQueue(queue_settings)
    pool = WorkerPool(queue, ProcessingPipeline(store, generator, renderer), concurrency=1)
    itinerary = await store.create("client", make_request())
    await queue.enqueue(JobPayload(itinerary_id=itinerary.id))

    await asyncio.wait_for(pool.run(lifespan=0.3), timeout=5)

    found = await store.find_by_id(itinerary.id)
    assert found.processing_status == ProcessingStatus.COMPLETED
    assert not pool.running


def test_concurrency_must_be_positive(store, generator, renderer):
    with pytest.raises(ValueError):
        WorkerPool(InMemoryJobQueue(), ProcessingPipeline(store, generator, renderer), concurrency=0)

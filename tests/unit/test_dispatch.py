"""Dispatch controller tests."""

import pytest

from conftest import FailingQueue, FakeGenerator, make_request, wait_for_terminal
from tripforge.dispatch import DispatchController
from tripforge.jobqueue import InMemoryJobQueue, JobOptions
from tripforge.persistence import ProcessingStatus
from tripforge.pipeline import ProcessingPipeline
from tripforge.tasks import BackgroundTaskRunner


@pytest.mark.asyncio
async def test_submit_enqueues_when_broker_available(store, generator, renderer):
    queue = InMemoryJobQueue()
    runner = BackgroundTaskRunner()
    controller = DispatchController(
        queue, ProcessingPipeline(store, generator, renderer), runner
    )
    itinerary = await store.create("client", make_request())

    result = await controller.submit(itinerary.id)

    assert result.method == "queue"
    assert result.job_id is not None
    assert result.queue_error is None
    job = await queue.get_job(result.job_id)
    assert job.payload.itinerary_id == itinerary.id
    assert runner.pending == 0
    assert generator.calls == 0
    found = await store.find_by_id(itinerary.id)
    assert found.processing_status == ProcessingStatus.PENDING


@pytest.mark.asyncio
async def test_submit_passes_job_options(store, generator, renderer):
    queue = InMemoryJobQueue()
    controller = DispatchController(
        queue,
        ProcessingPipeline(store, generator, renderer),
        BackgroundTaskRunner(),
        options=JobOptions(priority=3, delay=60),
    )
    itinerary = await store.create("client", make_request())

    result = await controller.submit(itinerary.id)

    job = await queue.get_job(result.job_id)
    assert job.priority == 3
    assert (await queue.depth()).delayed == 1


@pytest.mark.asyncio
async def test_submit_falls_back_to_direct_processing(store, generator, renderer):
    runner = BackgroundTaskRunner()
    controller = DispatchController(
        FailingQueue(), ProcessingPipeline(store, generator, renderer), runner
    )
    itinerary = await store.create("client", make_request())

    result = await controller.submit(itinerary.id)

    assert result.method == "direct"
    assert result.job_id is None
    assert "ECONNREFUSED" in result.queue_error
    assert await runner.join(timeout=5)
    found = await wait_for_terminal(store, itinerary.id)
    assert found.processing_status == ProcessingStatus.COMPLETED
    assert generator.calls == 1


@pytest.mark.asyncio
async def test_direct_fallback_failure_stays_inside_task(store, renderer):
    generator = FakeGenerator(fail=True)
    runner = BackgroundTaskRunner()
    controller = DispatchController(
        FailingQueue(), ProcessingPipeline(store, generator, renderer), runner
    )
    itinerary = await store.create("client", make_request())

    result = await controller.submit(itinerary.id)
    assert result.method == "direct"

    assert await runner.join(timeout=5)
    assert runner.failures == 0
    found = await store.find_by_id(itinerary.id)
    assert found.processing_status == ProcessingStatus.FAILED


@pytest.mark.asyncio
async def test_direct_fallback_for_missing_itinerary_does_not_raise(
    store, generator, renderer
):
    runner = BackgroundTaskRunner()
    controller = DispatchController(
        FailingQueue(), ProcessingPipeline(store, generator, renderer), runner
    )

    result = await controller.submit(12345)

    assert result.method == "direct"
    assert await runner.join(timeout=5)
    assert runner.failures == 0

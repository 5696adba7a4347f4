import asyncio

import pytest

from tripforge.tasks import BackgroundTaskRunner


@pytest.mark.asyncio
async def test_spawn_does_not_block_caller():
    runner = BackgroundTaskRunner()
    release = asyncio.Event()
    finished = []

    async def work():
        await release.wait()
        finished.append(True)

    runner.spawn(work, name="blocked")
    assert runner.pending == 1
    assert finished == []

    release.set()
    assert await runner.join(timeout=1)
    assert finished == [True]
    assert runner.pending == 0


@pytest.mark.asyncio
async def test_failures_are_logged_not_raised(caplog):
    runner = BackgroundTaskRunner()

    async def explode():
        raise RuntimeError("kaboom")

    runner.spawn(explode, name="explode")
    assert await runner.join(timeout=1)

    assert runner.failures == 1
    assert "Background task explode failed" in caplog.text


@pytest.mark.asyncio
async def test_join_times_out():
    runner = BackgroundTaskRunner()
    task = runner.spawn(lambda: asyncio.sleep(10), name="slow")

    assert not await runner.join(timeout=0.05)

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    assert runner.pending == 0

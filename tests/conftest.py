"""Shared fakes for the AI, PDF and broker collaborators."""

import asyncio
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional

import pytest

from tripforge.config import QueueConfig
from tripforge.errors import GenerationError, RenderError
from tripforge.generation import GeneratedContent
from tripforge.jobqueue import InMemoryJobQueue, Job
from tripforge.persistence import (
    InMemoryItineraryStore,
    Itinerary,
    ItineraryRequest,
    ItineraryStore,
    ProcessingStatus,
)
from tripforge.rendering import RenderedDocument, build_filename


class FakeGenerator:
    """Counts calls; can fail or stall on demand."""

    def __init__(
        self,
        content: str = "# Day 1\n- Visit the old town\n**Dinner** by the river",
        fail: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.content = content
        self.fail = fail
        self.delay = delay
        self.calls = 0
        self.prompts: List[str] = []

    async def generate(self, prompt: str, model: Optional[str] = None) -> GeneratedContent:
        self.calls += 1
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise GenerationError("provider unavailable")
        return GeneratedContent(content=self.content, model_used=model or "fake-model")


class FakeRenderer:
    """Records rendered documents without touching reportlab."""

    def __init__(self, directory: Path, fail: bool = False) -> None:
        self.directory = Path(directory)
        self.fail = fail
        self.calls = 0
        self.deleted: List[str] = []

    async def render(self, itinerary: Itinerary, content: str) -> RenderedDocument:
        self.calls += 1
        if self.fail:
            raise RenderError("template error", itinerary_id=itinerary.id)
        filename = build_filename(itinerary)
        return RenderedDocument(filename=filename, path=str(self.directory / filename))

    async def delete(self, path: str) -> None:
        self.deleted.append(path)


class FailingQueue(InMemoryJobQueue):
    """A broker that refuses every job."""

    async def _add(self, job: Job) -> None:
        raise ConnectionError("connect ECONNREFUSED 127.0.0.1:6379")

    async def ping(self) -> None:
        raise ConnectionError("connect ECONNREFUSED 127.0.0.1:6379")


class FlakyReadStore(InMemoryItineraryStore):
    """Raises on the next ``read_failures`` lookups."""

    def __init__(self) -> None:
        super().__init__()
        self.read_failures = 0

    async def find_by_id(self, itinerary_id: int) -> Optional[Itinerary]:
        if self.read_failures:
            self.read_failures -= 1
            raise ConnectionError("connection reset by peer")
        return await super().find_by_id(itinerary_id)


class FlakyFailedWriteStore(InMemoryItineraryStore):
    """Raises on the next ``write_failures`` attempts to mark an itinerary failed."""

    def __init__(self) -> None:
        super().__init__()
        self.write_failures = 0

    async def update_status(
        self, itinerary_id, status, completed_at=None, expected=None
    ) -> bool:
        if status == ProcessingStatus.FAILED and self.write_failures:
            self.write_failures -= 1
            raise ConnectionError("write timed out")
        return await super().update_status(itinerary_id, status, completed_at, expected)


def make_request(destination: str = "Tokyo, Japan", **overrides) -> ItineraryRequest:
    start = date.today() + timedelta(days=30)
    data = dict(
        destination=destination,
        start_date=start,
        end_date=start + timedelta(days=5),
        budget=2500.0,
        interests=["food", "temples"],
    )
    data.update(overrides)
    return ItineraryRequest(**data)


async def wait_for_terminal(
    store: ItineraryStore, itinerary_id: int, timeout: float = 5.0
) -> Itinerary:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        itinerary = await store.find_by_id(itinerary_id)
        if itinerary.processing_status.is_terminal:
            return itinerary
        if loop.time() >= deadline:
            raise AssertionError(
                f"itinerary {itinerary_id} stuck at {itinerary.processing_status.value}"
            )
        await asyncio.sleep(0.02)


@pytest.fixture
def store():
    return InMemoryItineraryStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def renderer(tmp_path):
    return FakeRenderer(tmp_path)


@pytest.fixture
def queue_settings():
    return QueueConfig(poll_interval=0.05, backoff_delay=0.05)

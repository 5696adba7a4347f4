"""Detached background task execution."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Schedules fire-and-forget coroutines and keeps track of them.

    The scheduler never awaits a spawned task. Failures are caught and logged
    inside the task; ``join`` lets callers that do care (tests, the CLI,
    shutdown) wait for the registry to drain.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self.failures = 0

    def spawn(
        self, factory: Callable[[], Awaitable[object]], name: Optional[str] = None
    ) -> asyncio.Task:
        """Schedule ``factory()`` on the running loop and return its task."""

        async def _guarded() -> None:
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception(f"Background task {name or '<unnamed>'} failed")

        task = asyncio.get_running_loop().create_task(_guarded(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for all registered tasks; ``True`` if none are left running."""
        while self._tasks:
            done, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
            if still_running:
                return False
        return True

"""Periodic recovery of itineraries stranded in ``pending``."""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from .jobqueue import BaseJobQueue
from .persistence import ItineraryStore
from .pipeline import ProcessingPipeline
from .tasks import BackgroundTaskRunner

logger = logging.getLogger(__name__)


class MonitorResult(BaseModel):
    """Summary of one monitor tick."""

    waiting: int = 0
    checked: int = 0
    dispatched: int = 0
    dispatched_ids: List[int] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MonitorStatus(BaseModel):
    running: bool
    check_interval: float
    stuck_threshold: float
    batch_size: int
    last_result: Optional[MonitorResult] = None


class StuckJobMonitor:
    """Dispatches old ``pending`` itineraries while the queue has a backlog.

    A tick only looks at the store when the queue reports waiting jobs, and
    never waits for the runs it dispatches. Duplicate dispatches of an id a
    worker is already handling are resolved by the pipeline claim.
    """

    def __init__(
        self,
        queue: BaseJobQueue,
        store: ItineraryStore,
        pipeline: ProcessingPipeline,
        runner: BackgroundTaskRunner,
        check_interval: float = 60.0,
        stuck_threshold: float = 60.0,
        batch_size: int = 20,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._queue = queue
        self._store = store
        self._pipeline = pipeline
        self._runner = runner
        self.check_interval = check_interval
        self.stuck_threshold = stuck_threshold
        self.batch_size = batch_size
        self._now = now
        self._task: Optional[asyncio.Task] = None
        self.last_result: Optional[MonitorResult] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin checking now and then every ``check_interval`` seconds."""
        if self.running:
            logger.warning("Stuck job monitor already running")
            return
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name="stuck-job-monitor"
        )
        logger.info(
            f"Stuck job monitor started (interval={self.check_interval}s, "
            f"threshold={self.stuck_threshold}s)"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Stuck job monitor stopped")

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            running=self.running,
            check_interval=self.check_interval,
            stuck_threshold=self.stuck_threshold,
            batch_size=self.batch_size,
            last_result=self.last_result,
        )

    async def check(self) -> MonitorResult:
        """Run one tick and return what it dispatched."""
        depth = await self._queue.depth()
        if depth.waiting == 0:
            logger.info("No waiting jobs in queue, skipping stuck itinerary check")
            result = MonitorResult()
            self.last_result = result
            return result

        pending = await self._store.find_pending(self.batch_size)
        now = self._now()
        result = MonitorResult(waiting=depth.waiting, checked=len(pending), checked_at=now)
        for itinerary in pending:
            if itinerary.age_seconds(now) < self.stuck_threshold:
                continue
            self._runner.spawn(
                functools.partial(
                    self._pipeline.run_detached, itinerary.id, source="recovery"
                ),
                name=f"recover-itinerary-{itinerary.id}",
            )
            result.dispatched_ids.append(itinerary.id)

        result.dispatched = len(result.dispatched_ids)
        if result.dispatched:
            logger.warning(
                f"Found {result.dispatched} stuck itineraries, dispatched for "
                f"direct processing: {result.dispatched_ids}"
            )
        else:
            logger.info(
                f"Checked {result.checked} pending itineraries, none older than "
                f"{self.stuck_threshold}s"
            )
        self.last_result = result
        return result

    # ------------------------------------------------------------------
    async def _loop(self) -> None:
        while True:
            try:
                await self.check()
            except Exception:
                logger.exception("Stuck itinerary check failed")
            await asyncio.sleep(self.check_interval)

"""Owned processing service wiring every component together."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .config import TripforgeConfig, load_config
from .dispatch import DispatchController, DispatchResult
from .generation import ContentGenerator, PydanticAIContentGenerator
from .jobqueue import BaseJobQueue, QueueHealth, get_job_queue
from .monitor import MonitorStatus, StuckJobMonitor
from .persistence import Itinerary, ItineraryRequest, ItineraryStore, get_store
from .pipeline import ProcessingPipeline, estimated_completion
from .rendering import PdfRenderer, ReportLabPdfRenderer
from .tasks import BackgroundTaskRunner
from .worker import WorkerPool

logger = logging.getLogger(__name__)


class Submission(BaseModel):
    """A freshly created itinerary and how it was handed off."""

    itinerary: Itinerary
    dispatch: DispatchResult
    estimated_completion: datetime


class WorkerStatus(BaseModel):
    running: bool
    concurrency: int
    processed: int
    failed: int


class ServiceStatus(BaseModel):
    running: bool
    worker: WorkerStatus
    monitor: MonitorStatus
    queue: QueueHealth
    background_tasks: int


class ProcessingService:
    """Owns the store, queue, pipeline, workers and monitor of one process.

    Construct it once, ``await start()`` at startup and ``await stop()`` at
    shutdown. Components are built from configuration unless injected, which
    is how tests swap in fakes for the AI and PDF collaborators.
    """

    def __init__(
        self,
        config: Optional[TripforgeConfig] = None,
        store: Optional[ItineraryStore] = None,
        queue: Optional[BaseJobQueue] = None,
        generator: Optional[ContentGenerator] = None,
        renderer: Optional[PdfRenderer] = None,
    ) -> None:
        self.config = config or load_config()
        self.store = store or get_store(config=self.config)
        self.queue = queue or get_job_queue(config=self.config)
        self.generator = generator or PydanticAIContentGenerator(
            self.config.generation.model
        )
        self.renderer = renderer or ReportLabPdfRenderer(self.config.pdf.storage_path)

        self.pipeline = ProcessingPipeline(
            self.store,
            self.generator,
            self.renderer,
            generation_timeout=self.config.generation.timeout,
            render_timeout=self.config.pdf.timeout,
        )
        self.runner = BackgroundTaskRunner()
        self.dispatcher = DispatchController(self.queue, self.pipeline, self.runner)
        self.workers = WorkerPool(
            self.queue,
            self.pipeline,
            concurrency=self.config.queue.concurrency,
            stall_check_interval=self.config.queue.stall_check_interval,
        )
        monitor_conf = self.config.monitor
        self.monitor = StuckJobMonitor(
            self.queue,
            self.store,
            self.pipeline,
            self.runner,
            check_interval=monitor_conf.check_interval,
            stuck_threshold=monitor_conf.stuck_threshold,
            batch_size=monitor_conf.batch_size,
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, workers: bool = True, monitor: Optional[bool] = None) -> None:
        """Connect the queue, then start the worker pool and the monitor.

        An unreachable broker does not prevent startup: submissions fall back
        to direct processing and the workers keep retrying the subscription.
        """
        if self._running:
            logger.warning("Processing service already started")
            return
        try:
            await self.queue.connect()
        except Exception as e:
            logger.error(f"Queue {self.queue.name} unreachable at startup: {e}")

        if workers:
            await self.workers.start()
        if monitor is None:
            monitor = self.config.monitor.enabled
        if monitor:
            self.monitor.start()
        self._running = True
        logger.info("Processing service started")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop monitor and workers, drain detached tasks, disconnect."""
        await self.monitor.stop()
        await self.workers.stop(timeout=timeout)
        if not await self.runner.join(timeout=timeout):
            logger.warning(
                f"{self.runner.pending} detached task(s) still running at shutdown"
            )
        await self.queue.disconnect()
        self._running = False
        logger.info("Processing service stopped")

    async def submit(self, itinerary_id: int) -> DispatchResult:
        return await self.dispatcher.submit(itinerary_id)

    async def create_itinerary(
        self,
        client_id: str,
        request: ItineraryRequest,
        session_id: Optional[str] = None,
    ) -> Submission:
        """Persist a ``pending`` itinerary and dispatch it for processing."""
        itinerary = await self.store.create(client_id, request, session_id)
        logger.info(
            f"Created itinerary_id={itinerary.id} for destination={itinerary.destination!r}"
        )
        result = await self.submit(itinerary.id)
        return Submission(
            itinerary=itinerary,
            dispatch=result,
            estimated_completion=estimated_completion(),
        )

    async def get_itinerary(self, itinerary_id: int) -> Optional[Itinerary]:
        return await self.store.find_by_id(itinerary_id)

    async def status(self) -> ServiceStatus:
        return ServiceStatus(
            running=self._running,
            worker=WorkerStatus(
                running=self.workers.running,
                concurrency=self.workers.concurrency,
                processed=self.workers.processed,
                failed=self.workers.failed,
            ),
            monitor=self.monitor.status(),
            queue=await self.queue.health_check(),
            background_tasks=self.runner.pending,
        )

    async def cleanup_old(self, days: int) -> List[Itinerary]:
        """Delete itineraries older than ``days`` along with their PDFs."""
        removed = await self.store.delete_older_than(days)
        for itinerary in removed:
            if not itinerary.pdf_path:
                continue
            try:
                await self.renderer.delete(itinerary.pdf_path)
            except Exception as e:
                logger.warning(
                    f"Could not delete PDF for itinerary_id={itinerary.id}: {e}"
                )
        logger.info(f"Cleaned up {len(removed)} itineraries older than {days} days")
        return removed

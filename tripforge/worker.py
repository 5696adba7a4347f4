"""Worker pool consuming itinerary jobs from the queue."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .errors import NotFoundError, ProcessingError
from .jobqueue import BaseJobQueue, Job
from .persistence import ProcessingStatus
from .pipeline import PipelineOutcome, ProcessingPipeline

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs ``concurrency`` consumers that feed jobs to the pipeline.

    Each consumer handles one job at a time. Failures are reported back to
    the broker, which owns retry and backoff. Only crashes before the claim
    are retryable: a missing or already failed itinerary ends the job. A
    maintenance loop requeues jobs whose worker stopped renewing the lock.
    """

    def __init__(
        self,
        queue: BaseJobQueue,
        pipeline: ProcessingPipeline,
        concurrency: int = 5,
        stall_check_interval: float = 30.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._pipeline = pipeline
        self.concurrency = concurrency
        self._stall_check_interval = stall_check_interval
        self._lock_renew_interval = queue.settings.lock_duration / 2
        self._workers: List[asyncio.Task] = []
        self._maintenance: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return any(not w.done() for w in self._workers)

    async def start(self) -> None:
        """Subscribe ``concurrency`` workers to the queue."""
        if self.running:
            logger.warning("Worker pool is already running")
            return

        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._workers = [
            loop.create_task(self._work(i), name=f"itinerary-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._maintenance = loop.create_task(
            self._requeue_stalled_loop(), name="itinerary-worker-maintenance"
        )
        logger.info(
            f"Worker pool started on queue={self._queue.name} "
            f"with concurrency={self.concurrency}"
        )

    async def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop taking new jobs and wait for in-flight ones.

        Running pipelines are never cancelled. If ``timeout`` elapses first
        they are left to finish on their own (or to be requeued by the broker
        as stalled if the process exits).

        Returns:
            ``True`` when every worker finished within ``timeout``.
        """
        if self._stop_event is None:
            return True
        self._stop_event.set()
        if self._maintenance is not None:
            self._maintenance.cancel()
            await asyncio.gather(self._maintenance, return_exceptions=True)
            self._maintenance = None

        if not self._workers:
            return True
        _, pending = await asyncio.wait(self._workers, timeout=timeout)
        if pending:
            logger.warning(f"Abandoning {len(pending)} in-flight job(s) on shutdown")
            return False
        self._workers = []
        logger.info(
            f"Worker pool stopped (processed={self.processed}, failed={self.failed})"
        )
        return True

    async def run(self, lifespan: Optional[float] = None) -> None:
        """Start, keep running for ``lifespan`` seconds (or forever), then stop."""
        await self.start()
        try:
            if lifespan is None:
                await asyncio.gather(*self._workers)
            else:
                await asyncio.sleep(lifespan)
        finally:
            await self.stop()

    # ------------------------------------------------------------------
    async def _work(self, index: int) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                async for job in self._queue.subscribe(stop_event=self._stop_event):
                    await self._handle_job(job)
            except Exception:
                logger.exception(f"Worker {index} lost its queue subscription; retrying")
                await asyncio.sleep(self._queue.settings.poll_interval)

    async def _handle_job(self, job: Job) -> None:
        itinerary_id = job.payload.itinerary_id
        logger.info(
            f"Starting job_id={job.id} for itinerary_id={itinerary_id} "
            f"(attempt {job.attempts_made + 1}/{job.max_attempts})"
        )
        heartbeat = asyncio.get_running_loop().create_task(self._renew_lock(job))
        try:
            result = await self._pipeline.run(itinerary_id)
        except NotFoundError as e:
            self.failed += 1
            await self._queue.fail(job, str(e), retryable=False)
            return
        except ProcessingError as e:
            # A retry cannot win the claim this run already holds
            self.failed += 1
            logger.error(f"Job job_id={job.id} crashed for itinerary_id={itinerary_id}: {e}")
            await self._pipeline.mark_failed(itinerary_id, expected=ProcessingStatus.PROCESSING)
            await self._queue.fail(job, str(e), retryable=False)
            return
        except Exception as e:
            self.failed += 1
            logger.error(f"Job job_id={job.id} crashed for itinerary_id={itinerary_id}: {e}")
            await self._queue.fail(job, str(e), retryable=True)
            return
        finally:
            heartbeat.cancel()

        if result.outcome == PipelineOutcome.FAILED:
            # The itinerary is terminal and a retry cannot claim it
            self.failed += 1
            failed = await self._queue.fail(
                job, result.error or "processing failed", retryable=False
            )
            logger.warning(
                f"Job job_id={job.id} failed for itinerary_id={itinerary_id}; "
                f"job state={failed.state.value}"
            )
            return

        self.processed += 1
        await self._queue.complete(job)
        logger.info(
            f"Job job_id={job.id} done for itinerary_id={itinerary_id} "
            f"({result.outcome.value}, {result.duration_ms:.0f}ms)"
        )

    async def _renew_lock(self, job: Job) -> None:
        while True:
            await asyncio.sleep(self._lock_renew_interval)
            if not await self._queue.extend_lock(job):
                return

    async def _requeue_stalled_loop(self) -> None:
        while True:
            await asyncio.sleep(self._stall_check_interval)
            try:
                requeued = await self._queue.requeue_stalled()
            except Exception:
                logger.exception("Stalled job check failed")
                continue
            if requeued:
                logger.warning(f"Stalled jobs handled: {requeued}")

"""Base job queue interface."""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from typing import AsyncIterator, Callable, List, Optional

from ..config import QueueConfig
from ..errors import EnqueueError
from ..utils.retry import compute_backoff
from .jobs import (
    Job,
    JobOptions,
    JobPayload,
    JobState,
    QueueDepth,
    QueueHealth,
    QueueStats,
    StalledCleanup,
)

logger = logging.getLogger(__name__)


class BaseJobQueue(metaclass=abc.ABCMeta):
    """Abstract at-least-once job queue.

    Backends implement storage of job records; retry, backoff and retention
    policy live here so every backend applies them identically.
    """

    def __init__(
        self,
        settings: Optional[QueueConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or QueueConfig()
        self.name = self.settings.name
        self._clock = clock

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    # ------------------------------------------------------------------
    # Producer side
    def build_job(self, payload: JobPayload, options: Optional[JobOptions] = None) -> Job:
        options = options or JobOptions()
        now = self._clock()
        delay = options.delay if options.delay is not None else self.settings.default_delay
        return Job(
            payload=payload,
            state=JobState.DELAYED if delay > 0 else JobState.WAITING,
            priority=options.priority if options.priority is not None else self.settings.priority,
            max_attempts=(
                options.attempts
                if options.attempts is not None
                else self.settings.max_attempts
            ),
            backoff_delay=(
                options.backoff_delay
                if options.backoff_delay is not None
                else self.settings.backoff_delay
            ),
            created_at=now,
            ready_at=now + delay,
        )

    async def enqueue(
        self, payload: JobPayload, options: Optional[JobOptions] = None
    ) -> str:
        """Add a job and return its id.

        Raises:
            EnqueueError: If the broker cannot accept the job.
        """
        job = self.build_job(payload, options)
        try:
            await self._add(job)
        except EnqueueError:
            raise
        except Exception as e:
            raise EnqueueError(
                f"Failed to enqueue itinerary {payload.itinerary_id}: {e}",
                itinerary_id=payload.itinerary_id,
            ) from e
        logger.info(
            f"Enqueued job_id={job.id} for itinerary_id={payload.itinerary_id} "
            f"on queue={self.name} (priority={job.priority})"
        )
        return job.id

    # ------------------------------------------------------------------
    # Consumer side
    async def subscribe(
        self,
        lifespan: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Job]:
        """Yield reserved jobs one at a time.

        Args:
            lifespan: Maximum time in seconds to keep polling. If None, runs
                until ``stop_event`` is set.
            stop_event: Optional event that ends the subscription.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if stop_event is not None and stop_event.is_set():
                break
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            job = await self.reserve(timeout=self.settings.poll_interval)
            if job is not None:
                yield job

    def _apply_failure(self, job: Job, error: str, retryable: bool) -> Job:
        """Decide between a delayed retry and terminal failure."""
        now = self._clock()
        job.attempts_made += 1
        job.failed_reason = error
        if retryable and job.attempts_made < job.max_attempts:
            job.state = JobState.DELAYED
            job.ready_at = now + compute_backoff(job.attempts_made, job.backoff_delay)
        else:
            job.state = JobState.FAILED
            job.finished_on = now
        return job

    def _apply_stall(self, job: Job) -> Job:
        now = self._clock()
        job.stalled_count += 1
        if job.stalled_count > self.settings.max_stalled_count:
            job.state = JobState.FAILED
            job.failed_reason = "job stalled more than allowable limit"
            job.finished_on = now
        else:
            job.state = JobState.WAITING
            job.ready_at = now
        return job

    async def health_check(self) -> QueueHealth:
        """Ping the broker and collect stats; never raises."""
        try:
            await self.ping()
            stats = await self.stats()
        except Exception as e:
            return QueueHealth(status="unhealthy", error=str(e))
        return QueueHealth(status="healthy", stats=stats)

    async def clean_stalled(self) -> StalledCleanup:
        """Sweep records that have been sitting too long in any state."""
        result = StalledCleanup(
            stalled_cleaned=await self.clean(5 * 60, JobState.FAILED),
            waiting_cleaned=await self.clean(30 * 60, JobState.WAITING),
            active_cleaned=await self.clean(60 * 60, JobState.ACTIVE),
        )
        logger.info(f"Stuck record sweep on queue={self.name}: {result.model_dump()}")
        return result

    # ------------------------------------------------------------------
    # Backend hooks
    @abc.abstractmethod
    async def _add(self, job: Job) -> None:
        """Persist a freshly built job in the waiting or delayed set."""
        raise NotImplementedError

    @abc.abstractmethod
    async def reserve(self, timeout: float = 1.0) -> Optional[Job]:
        """Move the next ready job to ``active`` and return it."""
        raise NotImplementedError

    @abc.abstractmethod
    async def extend_lock(self, job: Job) -> bool:
        """Renew the active lock; ``False`` if the job is no longer active."""
        raise NotImplementedError

    @abc.abstractmethod
    async def complete(self, job: Job) -> None:
        """Record successful processing."""
        raise NotImplementedError

    @abc.abstractmethod
    async def fail(self, job: Job, error: str, retryable: bool = True) -> Job:
        """Record a failed attempt and apply the retry policy."""
        raise NotImplementedError

    @abc.abstractmethod
    async def requeue_stalled(self) -> List[str]:
        """Requeue active jobs whose lock expired; return affected ids."""
        raise NotImplementedError

    @abc.abstractmethod
    async def depth(self) -> QueueDepth:
        raise NotImplementedError

    @abc.abstractmethod
    async def stats(self) -> QueueStats:
        raise NotImplementedError

    @abc.abstractmethod
    async def clean(self, older_than: float, state: JobState) -> int:
        """Remove records in ``state`` older than ``older_than`` seconds."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        raise NotImplementedError

    @abc.abstractmethod
    async def pause(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def resume(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def ping(self) -> None:
        """Raise if the broker is unreachable."""
        raise NotImplementedError

"""In-memory job queue for testing and single-process deployments."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from .base import BaseJobQueue
from .jobs import Job, JobState, QueueDepth, QueueStats

logger = logging.getLogger(__name__)


class InMemoryJobQueue(BaseJobQueue):
    """Simple in-process broker with the same retry semantics as Redis."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._jobs: Dict[str, Job] = {}
        self._waiting: List[Tuple[int, int, str]] = []
        self._delayed: Dict[str, float] = {}
        self._active: Dict[str, float] = {}
        self._completed: Deque[str] = deque()
        self._failed: Deque[str] = deque()
        self._seq = itertools.count()
        self._paused = False

    def _push_waiting(self, job: Job) -> None:
        job.state = JobState.WAITING
        heapq.heappush(self._waiting, (job.priority, next(self._seq), job.id))

    def _promote_delayed(self) -> None:
        now = self._clock()
        for job_id, ready_at in list(self._delayed.items()):
            if ready_at <= now:
                del self._delayed[job_id]
                self._push_waiting(self._jobs[job_id])

    def _retain(self, ids: Deque[str], keep: int) -> None:
        while len(ids) > keep:
            self._jobs.pop(ids.popleft(), None)

    # ------------------------------------------------------------------
    async def _add(self, job: Job) -> None:
        self._jobs[job.id] = job
        if job.state == JobState.DELAYED:
            self._delayed[job.id] = job.ready_at
        else:
            self._push_waiting(job)

    async def reserve(self, timeout: float = 1.0) -> Optional[Job]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            self._promote_delayed()
            if self._waiting and not self._paused:
                _, _, job_id = heapq.heappop(self._waiting)
                job = self._jobs[job_id]
                job.state = JobState.ACTIVE
                job.processed_on = self._clock()
                self._active[job_id] = job.processed_on + self.settings.lock_duration
                return job
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(min(0.05, max(deadline - loop.time(), 0)))

    async def extend_lock(self, job: Job) -> bool:
        if job.id not in self._active:
            return False
        self._active[job.id] = self._clock() + self.settings.lock_duration
        return True

    async def complete(self, job: Job) -> None:
        self._active.pop(job.id, None)
        job.attempts_made += 1
        job.state = JobState.COMPLETED
        job.finished_on = self._clock()
        self._jobs[job.id] = job
        self._completed.append(job.id)
        self._retain(self._completed, self.settings.keep_completed)

    async def fail(self, job: Job, error: str, retryable: bool = True) -> Job:
        self._active.pop(job.id, None)
        job = self._apply_failure(job, error, retryable)
        self._jobs[job.id] = job
        if job.state == JobState.DELAYED:
            self._delayed[job.id] = job.ready_at
        else:
            self._failed.append(job.id)
            self._retain(self._failed, self.settings.keep_failed)
        return job

    async def requeue_stalled(self) -> List[str]:
        now = self._clock()
        stalled = [job_id for job_id, until in self._active.items() if until <= now]
        for job_id in stalled:
            del self._active[job_id]
            job = self._apply_stall(self._jobs[job_id])
            if job.state == JobState.FAILED:
                self._failed.append(job_id)
                self._retain(self._failed, self.settings.keep_failed)
                logger.warning(f"Job job_id={job_id} stalled too often; marked failed")
            else:
                self._push_waiting(job)
                logger.warning(f"Requeued stalled job job_id={job_id}")
        return stalled

    async def depth(self) -> QueueDepth:
        return QueueDepth(
            waiting=len(self._waiting),
            active=len(self._active),
            delayed=len(self._delayed),
        )

    async def stats(self) -> QueueStats:
        depth = await self.depth()
        return QueueStats(
            **depth.model_dump(),
            completed=len(self._completed),
            failed=len(self._failed),
            paused=self._paused,
        )

    async def clean(self, older_than: float, state: JobState) -> int:
        cutoff = self._clock() - older_than
        removed = 0
        if state in (JobState.COMPLETED, JobState.FAILED):
            ids = self._completed if state == JobState.COMPLETED else self._failed
            for job_id in list(ids):
                job = self._jobs.get(job_id)
                if job is None or (job.finished_on or 0) < cutoff:
                    ids.remove(job_id)
                    self._jobs.pop(job_id, None)
                    removed += 1
        elif state == JobState.ACTIVE:
            for job_id in list(self._active):
                if (self._jobs[job_id].processed_on or 0) < cutoff:
                    del self._active[job_id]
                    del self._jobs[job_id]
                    removed += 1
        elif state == JobState.DELAYED:
            for job_id in list(self._delayed):
                if self._jobs[job_id].created_at < cutoff:
                    del self._delayed[job_id]
                    del self._jobs[job_id]
                    removed += 1
        else:
            keep = []
            for entry in self._waiting:
                if self._jobs[entry[2]].created_at < cutoff:
                    del self._jobs[entry[2]]
                    removed += 1
                else:
                    keep.append(entry)
            heapq.heapify(keep)
            self._waiting = keep
        return removed

    async def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def pause(self) -> None:
        self._paused = True

    async def resume(self) -> None:
        self._paused = False

    async def ping(self) -> None:
        return None

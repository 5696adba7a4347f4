"""Redis-backed job queue for cross-process processing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

import redis.asyncio as redis

from .base import BaseJobQueue
from .jobs import Job, JobState, QueueDepth, QueueStats

logger = logging.getLogger(__name__)

# Waiting jobs are ordered by priority first, then by insertion sequence.
_PRIORITY_WEIGHT = 10 ** 12


class RedisJobQueue(BaseJobQueue):
    """Job queue stored in Redis sorted sets and lists.

    Keys (all prefixed with ``tripforge:<queue name>:``):

    - ``job:<id>``: JSON job record
    - ``waiting``: zset scored by priority and sequence
    - ``delayed``: zset scored by ready time
    - ``active``: zset scored by lock expiry
    - ``completed`` / ``failed``: retention lists, newest first
    - ``seq``: insertion counter
    - ``paused``: flag

    Moves between sets go through ``ZREM`` so that when several workers race
    for the same job only the one whose removal succeeded proceeds.
    """

    def __init__(
        self,
        *args,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None
        self._connect_lock = asyncio.Lock()
        self._prefix = f"tripforge:{self.name}:"

    def _key(self, suffix: str) -> str:
        return f"{self._prefix}{suffix}"

    async def connect(self) -> None:
        """Connect to Redis, failing fast when the server is unreachable.

        Concurrent callers share one client.
        """
        async with self._connect_lock:
            if self._redis is None:
                self._redis = await self._open()

    async def _open(self) -> Any:
        client = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
            socket_connect_timeout=self.settings.connect_timeout,
            socket_timeout=self.settings.command_timeout,
        )
        try:
            await asyncio.wait_for(client.ping(), timeout=self.settings.connect_timeout)
        except BaseException:
            await client.aclose()
            raise
        return client

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if self._redis is None:
            await self.connect()
        return self._redis

    async def _save(self, job: Job) -> None:
        r = await self._client()
        await r.set(self._key(f"job:{job.id}"), job.to_json())

    async def _load(self, job_id: str) -> Optional[Job]:
        r = await self._client()
        raw = await r.get(self._key(f"job:{job_id}"))
        return Job.from_json(raw) if raw else None

    async def _push_waiting(self, job: Job) -> None:
        r = await self._client()
        job.state = JobState.WAITING
        seq = await r.incr(self._key("seq"))
        await self._save(job)
        await r.zadd(self._key("waiting"), {job.id: job.priority * _PRIORITY_WEIGHT + seq})

    async def _retain(self, list_name: str, job_id: str, keep: int) -> None:
        r = await self._client()
        key = self._key(list_name)
        await r.lpush(key, job_id)
        evicted = await r.lrange(key, keep, -1)
        if evicted:
            await r.ltrim(key, 0, keep - 1)
            await r.delete(*[self._key(f"job:{i}") for i in evicted])

    async def _promote_delayed(self) -> None:
        r = await self._client()
        due = await r.zrangebyscore(self._key("delayed"), "-inf", self._clock())
        for job_id in due:
            if await r.zrem(self._key("delayed"), job_id):
                job = await self._load(job_id)
                if job is not None:
                    await self._push_waiting(job)

    # ------------------------------------------------------------------
    async def _add(self, job: Job) -> None:
        r = await self._client()
        if job.state == JobState.DELAYED:
            await self._save(job)
            await r.zadd(self._key("delayed"), {job.id: job.ready_at})
        else:
            await self._push_waiting(job)

    async def reserve(self, timeout: float = 1.0) -> Optional[Job]:
        r = await self._client()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            await self._promote_delayed()
            if not await r.exists(self._key("paused")):
                for job_id in await r.zrange(self._key("waiting"), 0, 0):
                    if not await r.zrem(self._key("waiting"), job_id):
                        break
                    job = await self._load(job_id)
                    if job is None:
                        break
                    job.state = JobState.ACTIVE
                    job.processed_on = self._clock()
                    await self._save(job)
                    await r.zadd(
                        self._key("active"),
                        {job.id: job.processed_on + self.settings.lock_duration},
                    )
                    return job
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(min(0.1, max(deadline - loop.time(), 0)))

    async def extend_lock(self, job: Job) -> bool:
        r = await self._client()
        updated = await r.zadd(
            self._key("active"),
            {job.id: self._clock() + self.settings.lock_duration},
            xx=True,
            ch=True,
        )
        return bool(updated)

    async def complete(self, job: Job) -> None:
        r = await self._client()
        await r.zrem(self._key("active"), job.id)
        job.attempts_made += 1
        job.state = JobState.COMPLETED
        job.finished_on = self._clock()
        await self._save(job)
        await self._retain("completed", job.id, self.settings.keep_completed)

    async def fail(self, job: Job, error: str, retryable: bool = True) -> Job:
        r = await self._client()
        await r.zrem(self._key("active"), job.id)
        job = self._apply_failure(job, error, retryable)
        await self._save(job)
        if job.state == JobState.DELAYED:
            await r.zadd(self._key("delayed"), {job.id: job.ready_at})
        else:
            await self._retain("failed", job.id, self.settings.keep_failed)
        return job

    async def requeue_stalled(self) -> List[str]:
        r = await self._client()
        expired = await r.zrangebyscore(self._key("active"), "-inf", self._clock())
        requeued: List[str] = []
        for job_id in expired:
            if not await r.zrem(self._key("active"), job_id):
                continue
            job = await self._load(job_id)
            if job is None:
                continue
            job = self._apply_stall(job)
            if job.state == JobState.FAILED:
                await self._save(job)
                await self._retain("failed", job.id, self.settings.keep_failed)
                logger.warning(f"Job job_id={job_id} stalled too often; marked failed")
            else:
                await self._push_waiting(job)
                logger.warning(f"Requeued stalled job job_id={job_id}")
            requeued.append(job_id)
        return requeued

    async def depth(self) -> QueueDepth:
        r = await self._client()
        return QueueDepth(
            waiting=await r.zcard(self._key("waiting")),
            active=await r.zcard(self._key("active")),
            delayed=await r.zcard(self._key("delayed")),
        )

    async def stats(self) -> QueueStats:
        r = await self._client()
        depth = await self.depth()
        return QueueStats(
            **depth.model_dump(),
            completed=await r.llen(self._key("completed")),
            failed=await r.llen(self._key("failed")),
            paused=bool(await r.exists(self._key("paused"))),
        )

    async def clean(self, older_than: float, state: JobState) -> int:
        r = await self._client()
        cutoff = self._clock() - older_than
        removed = 0
        if state in (JobState.COMPLETED, JobState.FAILED):
            key = self._key(state.value)
            for job_id in await r.lrange(key, 0, -1):
                job = await self._load(job_id)
                if job is None or (job.finished_on or 0) < cutoff:
                    await r.lrem(key, 0, job_id)
                    await r.delete(self._key(f"job:{job_id}"))
                    removed += 1
            return removed

        key = self._key(state.value)
        for job_id in await r.zrange(key, 0, -1):
            job = await self._load(job_id)
            if job is None:
                age_ref = 0.0
            elif state == JobState.ACTIVE:
                age_ref = job.processed_on or 0.0
            else:
                age_ref = job.created_at
            if age_ref < cutoff and await r.zrem(key, job_id):
                await r.delete(self._key(f"job:{job_id}"))
                removed += 1
        return removed

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self._load(job_id)

    async def pause(self) -> None:
        r = await self._client()
        await r.set(self._key("paused"), "1")

    async def resume(self) -> None:
        r = await self._client()
        await r.delete(self._key("paused"))

    async def ping(self) -> None:
        r = await self._client()
        await asyncio.wait_for(r.ping(), timeout=self.settings.command_timeout)

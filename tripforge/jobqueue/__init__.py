"""Job queue factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TripforgeConfig, load_config
from .base import BaseJobQueue
from .inmemory import InMemoryJobQueue
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


def get_job_queue(
    backend: Optional[str] = None, config: Optional[TripforgeConfig] = None
) -> BaseJobQueue:
    """Factory function to get the configured job queue."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("TRIPFORGE_QUEUE_BACKEND")
        or config.queue.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryJobQueue(config.queue)
    elif backend == "redis":
        from .redis import RedisJobQueue

        redis_conf = config.queue.redis
        return RedisJobQueue(
            config.queue,
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported queue backend: {backend}")


__all__ = [
    "BaseJobQueue",
    "InMemoryJobQueue",
    "Job",
    "JobOptions",
    "JobPayload",
    "JobState",
    "QueueDepth",
    "QueueHealth",
    "QueueStats",
    "StalledCleanup",
    "get_job_queue",
]

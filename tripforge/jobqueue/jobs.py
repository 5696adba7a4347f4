"""Job records exchanged with the broker."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

PROCESS_ITINERARY = "process-itinerary"


class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPayload(BaseModel):
    """Weak reference to the itinerary a job should process."""

    itinerary_id: int


class JobOptions(BaseModel):
    """Per-enqueue overrides of the queue defaults."""

    priority: Optional[int] = None
    delay: Optional[float] = None
    attempts: Optional[int] = Field(default=None, ge=1)
    backoff_delay: Optional[float] = None


class Job(BaseModel):
    """Broker-owned job record; never the source of truth for an itinerary."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = PROCESS_ITINERARY
    payload: JobPayload
    state: JobState = JobState.WAITING
    priority: int = 1
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_delay: float = 5.0
    stalled_count: int = 0
    created_at: float = Field(default_factory=time.time)
    ready_at: float = Field(default_factory=time.time)
    processed_on: Optional[float] = None
    finished_on: Optional[float] = None
    failed_reason: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "Job":
        return cls.model_validate_json(data)


class QueueDepth(BaseModel):
    """Counts of unresolved jobs."""

    waiting: int = 0
    active: int = 0
    delayed: int = 0


class QueueStats(QueueDepth):
    """Depth plus retained terminal records."""

    completed: int = 0
    failed: int = 0
    paused: bool = False


class QueueHealth(BaseModel):
    status: Literal["healthy", "unhealthy"]
    error: Optional[str] = None
    stats: Optional[QueueStats] = None


class StalledCleanup(BaseModel):
    """Records removed by a stuck-record maintenance sweep."""

    stalled_cleaned: int = 0
    waiting_cleaned: int = 0
    active_cleaned: int = 0

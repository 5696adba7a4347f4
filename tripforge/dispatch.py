"""Itinerary dispatcher: enqueue, or fall back to direct processing."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from pydantic import BaseModel

from .jobqueue import BaseJobQueue, JobOptions, JobPayload
from .pipeline import ProcessingPipeline
from .tasks import BackgroundTaskRunner

logger = logging.getLogger(__name__)


class DispatchResult(BaseModel):
    """How an itinerary was handed off for processing."""

    itinerary_id: int
    method: Literal["queue", "direct"]
    job_id: Optional[str] = None
    queue_error: Optional[str] = None


class DispatchController:
    """Service responsible for handing new itineraries to processing.

    The queue is always tried first. When the broker refuses the job the
    pipeline is scheduled as a detached task instead; either way the caller
    gets an answer as soon as the enqueue attempt is over.
    """

    def __init__(
        self,
        queue: BaseJobQueue,
        pipeline: ProcessingPipeline,
        runner: BackgroundTaskRunner,
        options: Optional[JobOptions] = None,
    ) -> None:
        self._queue = queue
        self._pipeline = pipeline
        self._runner = runner
        self._options = options

    async def submit(self, itinerary_id: int) -> DispatchResult:
        """Dispatch ``itinerary_id``; never raises.

        Args:
            itinerary_id: Id of an already persisted ``pending`` itinerary.

        Returns:
            ``method="queue"`` with the job id, or ``method="direct"`` when the
            fallback was engaged.
        """
        try:
            job_id = await self._queue.enqueue(
                JobPayload(itinerary_id=itinerary_id), self._options
            )
        except Exception as e:
            logger.warning(
                f"Queue unavailable for itinerary_id={itinerary_id}, "
                f"using direct processing fallback: {e}"
            )
            self._runner.spawn(
                lambda: self._pipeline.run_detached(itinerary_id, source="direct"),
                name=f"direct-itinerary-{itinerary_id}",
            )
            return DispatchResult(
                itinerary_id=itinerary_id, method="direct", queue_error=str(e)
            )

        logger.info(f"Itinerary itinerary_id={itinerary_id} queued as job_id={job_id}")
        return DispatchResult(itinerary_id=itinerary_id, method="queue", job_id=job_id)

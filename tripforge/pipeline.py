"""Claim, generate, render, persist and complete one itinerary."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .errors import (
    ClaimLostError,
    GenerationError,
    NotFoundError,
    ProcessingError,
    RenderError,
    StoreError,
)
from .generation import ContentGenerator, GeneratedContent, GenerationRequest
from .persistence import Itinerary, ItineraryStore, ProcessingStatus
from .rendering import PdfRenderer, RenderedDocument

logger = logging.getLogger(__name__)

ESTIMATED_PROCESSING = timedelta(minutes=4)


class PipelineOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CLAIM_LOST = "claim_lost"


class PipelineResult(BaseModel):
    """What a single ``run`` did; the itinerary row stays authoritative."""

    itinerary_id: int
    outcome: PipelineOutcome
    error: Optional[str] = None
    duration_ms: float = 0.0


def estimated_completion(now: Optional[datetime] = None) -> datetime:
    """Expected completion time for an itinerary submitted at ``now``."""
    return (now or datetime.now(timezone.utc)) + ESTIMATED_PROCESSING


class ProcessingPipeline:
    """Drives one itinerary from ``pending`` to a terminal status.

    Every trigger path (queue worker, direct fallback, stuck-job recovery)
    goes through ``run``. The conditional ``pending -> processing`` claim is
    the only mutual exclusion between them: whoever loses the claim returns
    without touching the collaborators or the row.
    """

    def __init__(
        self,
        store: ItineraryStore,
        generator: ContentGenerator,
        renderer: PdfRenderer,
        model: Optional[str] = None,
        generation_timeout: float = 60.0,
        render_timeout: float = 300.0,
    ) -> None:
        self._store = store
        self._generator = generator
        self._renderer = renderer
        self._model = model
        self._generation_timeout = generation_timeout
        self._render_timeout = render_timeout

    @property
    def store(self) -> ItineraryStore:
        return self._store

    async def run(self, itinerary_id: int) -> PipelineResult:
        """Process ``itinerary_id`` once.

        Returns:
            The outcome. Generation, rendering and persistence failures are
            absorbed: the itinerary is marked ``failed`` and the result says so.

        Raises:
            NotFoundError: If the itinerary does not exist. Not retryable.
            ProcessingError: If something broke after this run won the claim.
                The itinerary may be left ``processing``.
        """
        started = time.monotonic()

        itinerary = await self._store.find_by_id(itinerary_id)
        if itinerary is None:
            logger.error(
                f"Itinerary itinerary_id={itinerary_id} not found; "
                "job references a missing row"
            )
            raise NotFoundError(
                f"Itinerary {itinerary_id} not found", itinerary_id=itinerary_id
            )

        try:
            await self._claim(itinerary)
        except ClaimLostError as e:
            logger.debug(f"{e}; skipping")
            return PipelineResult(
                itinerary_id=itinerary_id,
                outcome=PipelineOutcome.CLAIM_LOST,
                duration_ms=_elapsed_ms(started),
            )

        logger.info(
            f"Processing itinerary_id={itinerary_id} destination={itinerary.destination!r}"
        )
        try:
            return await self._process(itinerary, started)
        except Exception as e:
            raise ProcessingError(
                f"Processing of claimed itinerary {itinerary_id} broke: {e}",
                itinerary_id=itinerary_id,
            ) from e

    async def run_detached(self, itinerary_id: int, source: str = "direct") -> Optional[PipelineResult]:
        """Body of fire-and-forget runs (direct fallback, stuck-job recovery).

        Nothing escapes. A run that broke after winning the claim marks its
        itinerary ``failed``; one that broke earlier only does so while the
        row is still ``pending``, so a row claimed by another actor is left
        alone.
        """
        try:
            result = await self.run(itinerary_id)
        except ProcessingError as e:
            logger.error(f"{source} processing of itinerary_id={itinerary_id} crashed: {e}")
            await self.mark_failed(itinerary_id, expected=ProcessingStatus.PROCESSING)
            return None
        except Exception as e:
            logger.error(
                f"{source} processing of itinerary_id={itinerary_id} crashed "
                f"before claiming it: {e}"
            )
            await self.mark_failed(itinerary_id, expected=ProcessingStatus.PENDING)
            return None
        logger.info(
            f"{source} processing of itinerary_id={itinerary_id} finished: "
            f"{result.outcome.value}"
        )
        return result

    async def mark_failed(
        self, itinerary_id: int, expected: Optional[ProcessingStatus] = None
    ) -> bool:
        """Best-effort ``failed`` write for runs that could not record an outcome."""
        try:
            marked = await self._store.update_status(
                itinerary_id, ProcessingStatus.FAILED, expected=expected
            )
        except Exception:
            logger.exception(f"Could not mark itinerary_id={itinerary_id} as failed")
            return False
        if not marked:
            logger.warning(
                f"Left itinerary_id={itinerary_id} untouched; it is missing, "
                "terminal or owned by another run"
            )
        return marked

    # ------------------------------------------------------------------
    async def _claim(self, itinerary: Itinerary) -> None:
        if not await self._store.claim_for_processing(itinerary.id):
            raise ClaimLostError(
                f"Claim lost for itinerary_id={itinerary.id} "
                f"(last seen status={itinerary.processing_status.value})",
                itinerary_id=itinerary.id,
            )

    async def _process(self, itinerary: Itinerary, started: float) -> PipelineResult:
        try:
            generated = await self._generate(itinerary)
            document = await self._render(itinerary, generated.content)
            await self._persist(itinerary, generated, document)
        except (GenerationError, RenderError, StoreError) as e:
            duration = _elapsed_ms(started)
            logger.error(
                f"Itinerary processing failed for itinerary_id={itinerary.id} "
                f"after {duration:.0f}ms: {e}"
            )
            await self._store.update_status(itinerary.id, ProcessingStatus.FAILED)
            return PipelineResult(
                itinerary_id=itinerary.id,
                outcome=PipelineOutcome.FAILED,
                error=str(e),
                duration_ms=duration,
            )

        duration = _elapsed_ms(started)
        logger.info(
            f"Itinerary processing completed for itinerary_id={itinerary.id} "
            f"in {duration:.0f}ms ({len(generated.content)} chars, "
            f"pdf={document.filename})"
        )
        return PipelineResult(
            itinerary_id=itinerary.id,
            outcome=PipelineOutcome.COMPLETED,
            duration_ms=duration,
        )

    async def _generate(self, itinerary: Itinerary) -> GeneratedContent:
        prompt = GenerationRequest.from_itinerary(itinerary).to_prompt()
        try:
            return await asyncio.wait_for(
                self._generator.generate(prompt, self._model),
                timeout=self._generation_timeout,
            )
        except GenerationError:
            raise
        except asyncio.TimeoutError as e:
            raise GenerationError(
                f"AI generation timed out after {self._generation_timeout}s",
                itinerary_id=itinerary.id,
            ) from e
        except Exception as e:
            raise GenerationError(str(e), itinerary_id=itinerary.id) from e

    async def _render(self, itinerary: Itinerary, content: str) -> RenderedDocument:
        try:
            return await asyncio.wait_for(
                self._renderer.render(itinerary, content),
                timeout=self._render_timeout,
            )
        except RenderError:
            raise
        except asyncio.TimeoutError as e:
            raise RenderError(
                f"PDF rendering timed out after {self._render_timeout}s",
                itinerary_id=itinerary.id,
            ) from e
        except Exception as e:
            raise RenderError(str(e), itinerary_id=itinerary.id) from e

    async def _persist(
        self,
        itinerary: Itinerary,
        generated: GeneratedContent,
        document: RenderedDocument,
    ) -> None:
        try:
            written = await self._store.update_content(
                itinerary.id,
                generated.content,
                generated.model_used,
                document.filename,
                document.path,
            )
            if not written:
                raise StoreError(
                    f"Output for itinerary {itinerary.id} was rejected by the store",
                    itinerary_id=itinerary.id,
                )
            completed = await self._store.update_status(
                itinerary.id,
                ProcessingStatus.COMPLETED,
                datetime.now(timezone.utc),
            )
            if not completed:
                raise StoreError(
                    f"Itinerary {itinerary.id} could not be marked completed",
                    itinerary_id=itinerary.id,
                )
        except Exception as e:
            await self._discard_document(document)
            if isinstance(e, StoreError):
                raise
            raise StoreError(str(e), itinerary_id=itinerary.id) from e

    async def _discard_document(self, document: RenderedDocument) -> None:
        try:
            await self._renderer.delete(document.path)
        except Exception:
            logger.exception(f"Could not delete orphaned PDF {document.path}")


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000

"""In-memory implementation of the itinerary store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from .models import Itinerary, ItineraryRequest, ItineraryStats, ProcessingStatus
from .repository import ItineraryStore


class InMemoryItineraryStore(ItineraryStore):
    """Store itinerary state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. None of the conditional writes
    awaits between reading and writing a row, so each one is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._itineraries: Dict[int, Itinerary] = {}
        self._next_id = 0

    # ------------------------------------------------------------------
    async def create(
        self,
        client_id: str,
        request: ItineraryRequest,
        session_id: Optional[str] = None,
    ) -> Itinerary:
        self._next_id += 1
        itinerary = Itinerary(
            id=self._next_id,
            client_id=client_id,
            session_id=session_id,
            destination=request.destination,
            start_date=request.start_date,
            end_date=request.end_date,
            budget=request.budget,
            interests=list(request.interests),
        )
        self._itineraries[itinerary.id] = itinerary
        return itinerary.model_copy(deep=True)

    async def find_by_id(self, itinerary_id: int) -> Itinerary | None:
        itinerary = self._itineraries.get(itinerary_id)
        return itinerary.model_copy(deep=True) if itinerary else None

    async def claim_for_processing(self, itinerary_id: int) -> bool:
        itinerary = self._itineraries.get(itinerary_id)
        if itinerary is None or itinerary.processing_status != ProcessingStatus.PENDING:
            return False
        itinerary.processing_status = ProcessingStatus.PROCESSING
        return True

    async def update_content(
        self,
        itinerary_id: int,
        content: str,
        model_used: str,
        pdf_filename: Optional[str] = None,
        pdf_path: Optional[str] = None,
    ) -> bool:
        itinerary = self._itineraries.get(itinerary_id)
        if (
            itinerary is None
            or itinerary.processing_status != ProcessingStatus.PROCESSING
            or itinerary.generated_content
        ):
            return False
        itinerary.generated_content = content
        itinerary.model_used = model_used
        itinerary.pdf_filename = pdf_filename
        itinerary.pdf_path = pdf_path
        return True

    async def update_status(
        self,
        itinerary_id: int,
        status: ProcessingStatus,
        completed_at: Optional[datetime] = None,
        expected: Optional[ProcessingStatus] = None,
    ) -> bool:
        itinerary = self._itineraries.get(itinerary_id)
        if itinerary is None or itinerary.processing_status.is_terminal:
            return False
        current = itinerary.processing_status
        if expected is not None and current != expected:
            return False
        if status == ProcessingStatus.PROCESSING:
            return await self.claim_for_processing(itinerary_id)
        if status == ProcessingStatus.COMPLETED:
            if current != ProcessingStatus.PROCESSING or not itinerary.generated_content:
                return False
            itinerary.processing_status = status
            itinerary.completed_at = completed_at or datetime.now(timezone.utc)
            return True
        if status == ProcessingStatus.FAILED:
            itinerary.processing_status = status
            itinerary.generated_content = ""
            itinerary.model_used = None
            itinerary.pdf_filename = None
            itinerary.pdf_path = None
            itinerary.completed_at = None
            return True
        return False

    async def find_pending(self, limit: int = 10) -> list[Itinerary]:
        pending = [
            i for i in self._itineraries.values()
            if i.processing_status == ProcessingStatus.PENDING
        ]
        pending.sort(key=lambda i: (i.created_at, i.id))
        return [i.model_copy(deep=True) for i in pending[:limit]]

    async def find_recent(
        self,
        limit: int = 10,
        offset: int = 0,
        status: Optional[ProcessingStatus] = None,
    ) -> tuple[list[Itinerary], int]:
        rows = [
            i for i in self._itineraries.values()
            if status is None or i.processing_status == status
        ]
        rows.sort(key=lambda i: (i.created_at, i.id), reverse=True)
        page = rows[offset:offset + limit]
        return [i.model_copy(deep=True) for i in page], len(rows)

    async def find_by_client(
        self, client_id: str, limit: int = 10, offset: int = 0
    ) -> list[Itinerary]:
        rows = [i for i in self._itineraries.values() if i.client_id == client_id]
        rows.sort(key=lambda i: (i.created_at, i.id), reverse=True)
        return [i.model_copy(deep=True) for i in rows[offset:offset + limit]]

    async def get_stats(self) -> ItineraryStats:
        stats = ItineraryStats(total=len(self._itineraries))
        durations = []
        for itinerary in self._itineraries.values():
            stats.by_status[itinerary.processing_status.value] += 1
            if itinerary.completed_at is not None:
                durations.append(
                    (itinerary.completed_at - itinerary.created_at).total_seconds()
                )
        if durations:
            stats.avg_processing_seconds = sum(durations) / len(durations)
        return stats

    async def delete_older_than(self, days: int) -> list[Itinerary]:
        max_age = timedelta(days=days).total_seconds()
        removed = [
            i for i in self._itineraries.values() if i.age_seconds() > max_age
        ]
        for itinerary in removed:
            del self._itineraries[itinerary.id]
        return removed

"""Store abstraction for itinerary persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from .models import Itinerary, ItineraryRequest, ItineraryStats, ProcessingStatus


class ItineraryStore(Protocol):
    """Protocol for itinerary persistence backends.

    Every write that changes ``processing_status`` or the output fields is a
    single conditional statement: terminal rows are never touched and a
    refused write returns ``False`` instead of raising.
    """

    async def create(
        self,
        client_id: str,
        request: ItineraryRequest,
        session_id: Optional[str] = None,
    ) -> Itinerary:
        """Persist a new ``pending`` itinerary."""

    async def find_by_id(self, itinerary_id: int) -> Itinerary | None:
        """Retrieve an itinerary by id."""

    async def claim_for_processing(self, itinerary_id: int) -> bool:
        """Move ``pending`` to ``processing``; ``False`` if the claim was lost."""

    async def update_content(
        self,
        itinerary_id: int,
        content: str,
        model_used: str,
        pdf_filename: Optional[str] = None,
        pdf_path: Optional[str] = None,
    ) -> bool:
        """Write output fields once, while the itinerary is ``processing``."""

    async def update_status(
        self,
        itinerary_id: int,
        status: ProcessingStatus,
        completed_at: Optional[datetime] = None,
        expected: Optional[ProcessingStatus] = None,
    ) -> bool:
        """Apply a forward-only status transition.

        With ``expected`` the write only lands while the itinerary is still in
        that status.
        """

    async def find_pending(self, limit: int = 10) -> list[Itinerary]:
        """Return ``pending`` itineraries, oldest first."""

    async def find_recent(
        self,
        limit: int = 10,
        offset: int = 0,
        status: Optional[ProcessingStatus] = None,
    ) -> tuple[list[Itinerary], int]:
        """Return a newest-first page and the total matching count."""

    async def find_by_client(
        self, client_id: str, limit: int = 10, offset: int = 0
    ) -> list[Itinerary]:
        """Return itineraries requested by one client, newest first."""

    async def get_stats(self) -> ItineraryStats:
        """Aggregate counts and processing time."""

    async def delete_older_than(self, days: int) -> list[Itinerary]:
        """Delete and return itineraries created more than ``days`` ago."""

"""Data models for persisted itinerary state."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)

    @property
    def sources(self) -> tuple[ProcessingStatus, ...]:
        """Statuses this one may be entered from."""
        return {
            ProcessingStatus.PROCESSING: (ProcessingStatus.PENDING,),
            ProcessingStatus.COMPLETED: (ProcessingStatus.PROCESSING,),
            ProcessingStatus.FAILED: (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING),
        }.get(self, ())


class ItineraryRequest(BaseModel):
    """Trip parameters supplied by the client; immutable once stored."""

    destination: str
    start_date: date
    end_date: date
    budget: Optional[float] = None
    interests: List[str] = Field(default_factory=list)


class Itinerary(BaseModel):
    """Persisted itinerary and its generation lifecycle."""

    id: int
    client_id: str
    session_id: Optional[str] = None
    destination: str
    start_date: date
    end_date: date
    budget: Optional[float] = None
    interests: List[str] = Field(default_factory=list)
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    generated_content: str = ""
    model_used: Optional[str] = None
    pdf_filename: Optional[str] = None
    pdf_path: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def duration_days(self) -> int:
        return max((self.end_date - self.start_date).days, 1)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since creation; naive timestamps are treated as UTC."""
        now = now or datetime.now(timezone.utc)
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return (now - created).total_seconds()


class ItineraryStats(BaseModel):
    """Aggregate counts over all stored itineraries."""

    total: int = 0
    by_status: Dict[str, int] = Field(
        default_factory=lambda: {s.value: 0 for s in ProcessingStatus}
    )
    avg_processing_seconds: float = 0.0

"""Error taxonomy for itinerary processing."""

from __future__ import annotations

from typing import Optional


class TripforgeError(Exception):
    """Base class for all processing errors."""

    retryable: bool = False

    def __init__(self, message: str, itinerary_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.itinerary_id = itinerary_id


class EnqueueError(TripforgeError):
    """The broker could not accept a job (unreachable, timeout, refused)."""

    retryable = True


class NotFoundError(TripforgeError):
    """The itinerary referenced by a job does not exist."""


class ClaimLostError(TripforgeError):
    """Another actor already moved the itinerary out of ``pending``."""


class GenerationError(TripforgeError):
    """The AI content generator failed or timed out."""


class RenderError(TripforgeError):
    """The PDF renderer failed or timed out."""


class StoreError(TripforgeError):
    """The itinerary store rejected or failed a write."""


class ProcessingError(TripforgeError):
    """A run that won the claim broke before it could record its outcome."""


__all__ = [
    "TripforgeError",
    "EnqueueError",
    "NotFoundError",
    "ClaimLostError",
    "GenerationError",
    "RenderError",
    "StoreError",
    "ProcessingError",
]

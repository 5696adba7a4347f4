"""Persistence layer for itineraries."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TripforgeConfig, load_config
from .inmemory import InMemoryItineraryStore
from .models import Itinerary, ItineraryRequest, ItineraryStats, ProcessingStatus
from .postgres import PostgresItineraryStore
from .repository import ItineraryStore
from .sqlite import SQLiteItineraryStore

_store_instance: ItineraryStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[TripforgeConfig] = None
) -> ItineraryStore:
    """Factory function to obtain an itinerary store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``TRIPFORGE_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("TRIPFORGE_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _store_instance = InMemoryItineraryStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteItineraryStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        _store_instance = PostgresItineraryStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "Itinerary",
    "ItineraryRequest",
    "ItineraryStats",
    "ItineraryStore",
    "ProcessingStatus",
    "InMemoryItineraryStore",
    "SQLiteItineraryStore",
    "PostgresItineraryStore",
    "get_store",
]

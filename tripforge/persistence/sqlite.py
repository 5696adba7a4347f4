"""SQLite implementation of the itinerary store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from ..errors import StoreError
from .models import Itinerary, ItineraryRequest, ItineraryStats, ProcessingStatus
from .repository import ItineraryStore

_COLUMNS = (
    "id, client_id, session_id, destination, start_date, end_date, budget, "
    "interests, processing_status, generated_content, model_used, pdf_filename, "
    "pdf_path, created_at, completed_at"
)


class SQLiteItineraryStore(ItineraryStore):
    """Persist itinerary state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS itineraries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                client_id TEXT NOT NULL,
                session_id TEXT,
                destination TEXT NOT NULL,
                start_date TEXT NOT NULL,
                end_date TEXT NOT NULL,
                budget REAL,
                interests TEXT NOT NULL DEFAULT '[]',
                processing_status TEXT NOT NULL DEFAULT 'pending',
                generated_content TEXT NOT NULL DEFAULT '',
                model_used TEXT,
                pdf_filename TEXT,
                pdf_path TEXT,
                created_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_itineraries_status_created "
            "ON itineraries (processing_status, created_at)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> sqlite3.Cursor:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur

    def _rowcount(self, query: str, *params: Any) -> int:
        return self._execute(query, *params).rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _to_model(row: sqlite3.Row) -> Itinerary:
        return Itinerary(
            id=row["id"],
            client_id=row["client_id"],
            session_id=row["session_id"],
            destination=row["destination"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            budget=row["budget"],
            interests=json.loads(row["interests"]) if row["interests"] else [],
            processing_status=ProcessingStatus(row["processing_status"]),
            generated_content=row["generated_content"],
            model_used=row["model_used"],
            pdf_filename=row["pdf_filename"],
            pdf_path=row["pdf_path"],
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
        )

    # ------------------------------------------------------------------
    # Store API
    async def create(
        self,
        client_id: str,
        request: ItineraryRequest,
        session_id: Optional[str] = None,
    ) -> Itinerary:
        cur = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO itineraries (
                client_id, session_id, destination, start_date, end_date,
                budget, interests, processing_status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            client_id,
            session_id,
            request.destination,
            request.start_date.isoformat(),
            request.end_date.isoformat(),
            request.budget,
            json.dumps(request.interests),
            ProcessingStatus.PENDING.value,
            datetime.now(timezone.utc).isoformat(),
        )
        itinerary = await self.find_by_id(cur.lastrowid)
        if itinerary is None:
            raise StoreError("Inserted itinerary could not be read back")
        return itinerary

    async def find_by_id(self, itinerary_id: int) -> Itinerary | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM itineraries WHERE id = ?",
            itinerary_id,
        )
        return self._to_model(row) if row else None

    async def claim_for_processing(self, itinerary_id: int) -> bool:
        affected = await asyncio.to_thread(
            self._rowcount,
            "UPDATE itineraries SET processing_status = 'processing' "
            "WHERE id = ? AND processing_status = 'pending'",
            itinerary_id,
        )
        return affected == 1

    async def update_content(
        self,
        itinerary_id: int,
        content: str,
        model_used: str,
        pdf_filename: Optional[str] = None,
        pdf_path: Optional[str] = None,
    ) -> bool:
        affected = await asyncio.to_thread(
            self._rowcount,
            """
            UPDATE itineraries
            SET generated_content = ?, model_used = ?, pdf_filename = ?, pdf_path = ?
            WHERE id = ? AND processing_status = 'processing' AND generated_content = ''
            """,
            content,
            model_used,
            pdf_filename,
            pdf_path,
            itinerary_id,
        )
        return affected == 1

    async def update_status(
        self,
        itinerary_id: int,
        status: ProcessingStatus,
        completed_at: Optional[datetime] = None,
        expected: Optional[ProcessingStatus] = None,
    ) -> bool:
        allowed = [s.value for s in status.sources if expected in (None, s)]
        if not allowed:
            return False
        if status == ProcessingStatus.PROCESSING:
            return await self.claim_for_processing(itinerary_id)
        if status == ProcessingStatus.COMPLETED:
            affected = await asyncio.to_thread(
                self._rowcount,
                """
                UPDATE itineraries SET processing_status = 'completed', completed_at = ?
                WHERE id = ? AND processing_status = 'processing' AND generated_content != ''
                """,
                (completed_at or datetime.now(timezone.utc)).isoformat(),
                itinerary_id,
            )
            return affected == 1
        if status == ProcessingStatus.FAILED:
            placeholders = ", ".join("?" * len(allowed))
            affected = await asyncio.to_thread(
                self._rowcount,
                f"""
                UPDATE itineraries
                SET processing_status = 'failed', generated_content = '',
                    model_used = NULL, pdf_filename = NULL, pdf_path = NULL,
                    completed_at = NULL
                WHERE id = ? AND processing_status IN ({placeholders})
                """,
                itinerary_id,
                *allowed,
            )
            return affected == 1
        return False

    async def find_pending(self, limit: int = 10) -> list[Itinerary]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM itineraries WHERE processing_status = 'pending' "
            "ORDER BY created_at ASC, id ASC LIMIT ?",
            limit,
        )
        return [self._to_model(r) for r in rows]

    async def find_recent(
        self,
        limit: int = 10,
        offset: int = 0,
        status: Optional[ProcessingStatus] = None,
    ) -> tuple[list[Itinerary], int]:
        where = "WHERE processing_status = ?" if status else ""
        params: tuple = (status.value,) if status else ()
        count_row = await asyncio.to_thread(
            self._fetchone, f"SELECT COUNT(*) AS total FROM itineraries {where}", *params
        )
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM itineraries {where} "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            *params,
            limit,
            offset,
        )
        return [self._to_model(r) for r in rows], int(count_row["total"])

    async def find_by_client(
        self, client_id: str, limit: int = 10, offset: int = 0
    ) -> list[Itinerary]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM itineraries WHERE client_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            client_id,
            limit,
            offset,
        )
        return [self._to_model(r) for r in rows]

    async def get_stats(self) -> ItineraryStats:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT processing_status, COUNT(*) AS n FROM itineraries GROUP BY processing_status",
        )
        stats = ItineraryStats()
        for row in rows:
            stats.by_status[row["processing_status"]] = row["n"]
            stats.total += row["n"]
        completed = await asyncio.to_thread(
            self._fetchall,
            "SELECT created_at, completed_at FROM itineraries WHERE completed_at IS NOT NULL",
        )
        durations = [
            (
                datetime.fromisoformat(r["completed_at"])
                - datetime.fromisoformat(r["created_at"])
            ).total_seconds()
            for r in completed
        ]
        if durations:
            stats.avg_processing_seconds = sum(durations) / len(durations)
        return stats

    async def delete_older_than(self, days: int) -> list[Itinerary]:
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM itineraries WHERE created_at < ?",
            cutoff,
        )
        await asyncio.to_thread(
            self._execute, "DELETE FROM itineraries WHERE created_at < ?", cutoff
        )
        return [self._to_model(r) for r in rows]

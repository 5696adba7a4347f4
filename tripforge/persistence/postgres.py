"""PostgreSQL implementation of the itinerary store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg

from .models import Itinerary, ItineraryRequest, ItineraryStats, ProcessingStatus
from .repository import ItineraryStore

_COLUMNS = (
    "id, client_id, session_id, destination, start_date, end_date, budget, "
    "interests, processing_status, generated_content, model_used, pdf_filename, "
    "pdf_path, created_at, completed_at"
)


class PostgresItineraryStore(ItineraryStore):
    """Persist itinerary state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS itineraries (
                id SERIAL PRIMARY KEY,
                client_id VARCHAR(255) NOT NULL,
                session_id VARCHAR(255),
                destination VARCHAR(255) NOT NULL,
                start_date DATE NOT NULL,
                end_date DATE NOT NULL,
                budget DOUBLE PRECISION,
                interests TEXT[] NOT NULL DEFAULT '{}',
                processing_status VARCHAR(50) NOT NULL DEFAULT 'pending'
                    CHECK (processing_status IN ('pending', 'processing', 'completed', 'failed')),
                generated_content TEXT NOT NULL DEFAULT '',
                model_used VARCHAR(100),
                pdf_filename VARCHAR(255),
                pdf_path VARCHAR(500),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_itineraries_status_created "
            "ON itineraries (processing_status, created_at)"
        )

    @staticmethod
    def _to_model(row: Any) -> Itinerary:
        return Itinerary(
            id=row["id"],
            client_id=row["client_id"],
            session_id=row["session_id"],
            destination=row["destination"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            budget=row["budget"],
            interests=list(row["interests"] or []),
            processing_status=ProcessingStatus(row["processing_status"]),
            generated_content=row["generated_content"],
            model_used=row["model_used"],
            pdf_filename=row["pdf_filename"],
            pdf_path=row["pdf_path"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )

    async def _returning_id(self, query: str, *params: Any) -> bool:
        """Run a conditional UPDATE ... RETURNING id; True when a row matched."""
        conn = await self._connect()
        try:
            return await conn.fetchval(query, *params) is not None
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def create(
        self,
        client_id: str,
        request: ItineraryRequest,
        session_id: Optional[str] = None,
    ) -> Itinerary:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"""
                INSERT INTO itineraries (
                    client_id, session_id, destination, start_date, end_date,
                    budget, interests, processing_status
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, 'pending')
                RETURNING {_COLUMNS}
                """,
                client_id,
                session_id,
                request.destination,
                request.start_date,
                request.end_date,
                request.budget,
                list(request.interests),
            )
        finally:
            await conn.close()
        return self._to_model(row)

    async def find_by_id(self, itinerary_id: int) -> Itinerary | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM itineraries WHERE id = $1", itinerary_id
            )
        finally:
            await conn.close()
        return self._to_model(row) if row else None

    async def claim_for_processing(self, itinerary_id: int) -> bool:
        return await self._returning_id(
            "UPDATE itineraries SET processing_status = 'processing' "
            "WHERE id = $1 AND processing_status = 'pending' RETURNING id",
            itinerary_id,
        )

    async def update_content(
        self,
        itinerary_id: int,
        content: str,
        model_used: str,
        pdf_filename: Optional[str] = None,
        pdf_path: Optional[str] = None,
    ) -> bool:
        return await self._returning_id(
            """
            UPDATE itineraries
            SET generated_content = $1, model_used = $2, pdf_filename = $3, pdf_path = $4
            WHERE id = $5 AND processing_status = 'processing' AND generated_content = ''
            RETURNING id
            """,
            content,
            model_used,
            pdf_filename,
            pdf_path,
            itinerary_id,
        )

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
            return await self._returning_id(
                """
                UPDATE itineraries SET processing_status = 'completed', completed_at = $1
                WHERE id = $2 AND processing_status = 'processing' AND generated_content <> ''
                RETURNING id
                """,
                completed_at or datetime.now(timezone.utc),
                itinerary_id,
            )
        if status == ProcessingStatus.FAILED:
            return await self._returning_id(
                """
                UPDATE itineraries
                SET processing_status = 'failed', generated_content = '',
                    model_used = NULL, pdf_filename = NULL, pdf_path = NULL,
                    completed_at = NULL
                WHERE id = $1 AND processing_status = ANY($2::varchar[])
                RETURNING id
                """,
                itinerary_id,
                allowed,
            )
        return False

    async def find_pending(self, limit: int = 10) -> list[Itinerary]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM itineraries WHERE processing_status = 'pending' "
                "ORDER BY created_at ASC, id ASC LIMIT $1",
                limit,
            )
        finally:
            await conn.close()
        return [self._to_model(r) for r in rows]

    async def find_recent(
        self,
        limit: int = 10,
        offset: int = 0,
        status: Optional[ProcessingStatus] = None,
    ) -> tuple[list[Itinerary], int]:
        conn = await self._connect()
        try:
            if status:
                total = await conn.fetchval(
                    "SELECT COUNT(*) FROM itineraries WHERE processing_status = $1",
                    status.value,
                )
                rows = await conn.fetch(
                    f"SELECT {_COLUMNS} FROM itineraries WHERE processing_status = $1 "
                    "ORDER BY created_at DESC, id DESC LIMIT $2 OFFSET $3",
                    status.value,
                    limit,
                    offset,
                )
            else:
                total = await conn.fetchval("SELECT COUNT(*) FROM itineraries")
                rows = await conn.fetch(
                    f"SELECT {_COLUMNS} FROM itineraries "
                    "ORDER BY created_at DESC, id DESC LIMIT $1 OFFSET $2",
                    limit,
                    offset,
                )
        finally:
            await conn.close()
        return [self._to_model(r) for r in rows], int(total)

    async def find_by_client(
        self, client_id: str, limit: int = 10, offset: int = 0
    ) -> list[Itinerary]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM itineraries WHERE client_id = $1 "
                "ORDER BY created_at DESC, id DESC LIMIT $2 OFFSET $3",
                client_id,
                limit,
                offset,
            )
        finally:
            await conn.close()
        return [self._to_model(r) for r in rows]

    async def get_stats(self) -> ItineraryStats:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT processing_status, COUNT(*) AS n FROM itineraries GROUP BY processing_status"
            )
            avg = await conn.fetchval(
                "SELECT AVG(EXTRACT(EPOCH FROM (completed_at - created_at))) "
                "FROM itineraries WHERE completed_at IS NOT NULL"
            )
        finally:
            await conn.close()
        stats = ItineraryStats()
        for row in rows:
            stats.by_status[row["processing_status"]] = row["n"]
            stats.total += row["n"]
        stats.avg_processing_seconds = float(avg or 0.0)
        return stats

    async def delete_older_than(self, days: int) -> list[Itinerary]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"DELETE FROM itineraries WHERE created_at < NOW() - make_interval(days => $1) "
                f"RETURNING {_COLUMNS}",
                days,
            )
        finally:
            await conn.close()
        return [self._to_model(r) for r in rows]

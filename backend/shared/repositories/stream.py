"""Repository for streams and samples tables."""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg

from shared.models.stream import Sample, Stream

logger = logging.getLogger(__name__)

_STREAM_COLUMNS = (
    "id, owner_id, platform, platform_stream_id, broadcaster_id, title, thumbnail_url, "
    "started_at, ended_at, peak_viewer_count, created_at"
)


class StreamRepository:
    """Pure SQL operations for stream sessions and their viewer samples.

    Mutations that other triggers may race on (end detection, peak) are
    single guarded UPDATEs whose result says whether this call changed
    the row.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Stream Operations ====================

    async def create_stream(
        self,
        owner_id: str,
        platform_stream_id: str,
        broadcaster_id: str,
        started_at: datetime,
        *,
        title: str | None = None,
        thumbnail_url: str | None = None,
        platform: str = "twitch",
    ) -> Stream | None:
        """Insert a stream. Returns None if this platform stream already exists."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO streams
                    (owner_id, platform, platform_stream_id, broadcaster_id,
                     started_at, title, thumbnail_url)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (platform, platform_stream_id) DO NOTHING
                RETURNING {_STREAM_COLUMNS}
                """,
                owner_id,
                platform,
                platform_stream_id,
                broadcaster_id,
                started_at,
                title,
                thumbnail_url,
            )
            return Stream(**dict(row)) if row else None

    async def get_by_platform_stream_id(
        self, platform_stream_id: str, platform: str = "twitch"
    ) -> Stream | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_STREAM_COLUMNS} FROM streams
                WHERE platform = $1 AND platform_stream_id = $2
                """,
                platform,
                platform_stream_id,
            )
            return Stream(**dict(row)) if row else None

    async def get_stream(self, stream_id: int, owner_id: str | None = None) -> Stream | None:
        """Fetch a stream; when *owner_id* is given the read is tenant-scoped."""
        async with self.pool.acquire() as conn:
            if owner_id is None:
                row = await conn.fetchrow(
                    f"SELECT {_STREAM_COLUMNS} FROM streams WHERE id = $1", stream_id
                )
            else:
                row = await conn.fetchrow(
                    f"SELECT {_STREAM_COLUMNS} FROM streams WHERE id = $1 AND owner_id = $2",
                    stream_id,
                    owner_id,
                )
            return Stream(**dict(row)) if row else None

    async def list_active(self) -> list[Stream]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_STREAM_COLUMNS} FROM streams WHERE ended_at IS NULL ORDER BY id"
            )
            return [Stream(**dict(r)) for r in rows]

    async def mark_ended(self, stream_id: int, ended_at: datetime) -> bool:
        """Set ended_at once. Returns False if the stream was already ended."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE streams SET ended_at = $2 WHERE id = $1 AND ended_at IS NULL",
                stream_id,
                ended_at,
            )
            return result == "UPDATE 1"

    async def raise_peak(self, stream_id: int, viewer_count: int) -> bool:
        """Monotonic max on peak_viewer_count. Returns True if the peak moved."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE streams SET peak_viewer_count = $2
                WHERE id = $1
                  AND (peak_viewer_count IS NULL OR peak_viewer_count < $2)
                """,
                stream_id,
                viewer_count,
            )
            return result == "UPDATE 1"

    async def close_stale(self, cutoff: datetime) -> list[int]:
        """End live streams whose latest sample (or start) is older than *cutoff*.

        ended_at is set to the last moment the stream was seen live.
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                WITH last_seen AS (
                    SELECT s.id,
                           COALESCE(MAX(sm.taken_at), s.started_at) AS seen_at
                    FROM streams s
                    LEFT JOIN samples sm ON sm.stream_id = s.id
                    WHERE s.ended_at IS NULL
                    GROUP BY s.id
                )
                UPDATE streams st SET ended_at = ls.seen_at
                FROM last_seen ls
                WHERE st.id = ls.id
                  AND st.ended_at IS NULL
                  AND ls.seen_at < $1
                RETURNING st.id
                """,
                cutoff,
            )
            return [r["id"] for r in rows]

    # ==================== Sample Operations ====================

    async def insert_sample(
        self, stream_id: int, viewer_count: int, taken_at: datetime | None = None
    ) -> Sample:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO samples (stream_id, viewer_count, taken_at)
                VALUES ($1, $2, COALESCE($3, NOW()))
                RETURNING id, stream_id, taken_at, viewer_count
                """,
                stream_id,
                viewer_count,
                taken_at,
            )
            if row is None:
                raise ValueError("Failed to store sample: no row returned")
            return Sample(**dict(row))

    async def list_samples(
        self,
        stream_id: int,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Sample]:
        """Samples of a stream in taken_at order, optionally bounded [since, until)."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, stream_id, taken_at, viewer_count
                FROM samples
                WHERE stream_id = $1
                  AND ($2::timestamptz IS NULL OR taken_at >= $2)
                  AND ($3::timestamptz IS NULL OR taken_at < $3)
                ORDER BY taken_at
                """,
                stream_id,
                since,
                until,
            )
            return [Sample(**dict(r)) for r in rows]

    async def list_latest_sample_times(self, limit: int = 2) -> list[datetime]:
        """Most recent sample timestamps across all streams (sampler health)."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT taken_at FROM samples ORDER BY taken_at DESC LIMIT $1", limit
            )
            return [r["taken_at"] for r in rows]

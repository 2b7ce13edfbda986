"""Repository for links and clicks tables."""

from __future__ import annotations

import logging

import asyncpg

from shared.cache import AsyncTTLCache, cached
from shared.models.link import Link

logger = logging.getLogger(__name__)

# Links are immutable once created, so TTL only bounds memory.
_link_cache = AsyncTTLCache(maxsize=1024, ttl=3600)

_COLUMNS = "id, owner_id, short_code, target_url, campaign_id, stream_id, has_media, created_at"


class LinkRepository:
    """Pure SQL operations for short links and their click log."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def insert_link(
        self,
        owner_id: str,
        short_code: str,
        target_url: str,
        *,
        campaign_id: str | None = None,
        stream_id: int | None = None,
        has_media: bool = False,
    ) -> Link | None:
        """Insert a link. Returns None when *short_code* is already taken."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO links (owner_id, short_code, target_url, campaign_id, stream_id, has_media)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (short_code) DO NOTHING
                RETURNING {_COLUMNS}
                """,
                owner_id,
                short_code,
                target_url,
                campaign_id,
                stream_id,
                has_media,
            )
            return Link(**dict(row)) if row else None

    @cached(
        cache=_link_cache,
        key_func=lambda self, short_code: f"link:{short_code}",
        cache_none=False,
    )
    async def get_by_short_code(self, short_code: str) -> Link | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM links WHERE short_code = $1", short_code
            )
            return Link(**dict(row)) if row else None

    async def insert_click(
        self, link_id: int, user_agent: str | None, referrer: str | None
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO clicks (link_id, user_agent, referrer) VALUES ($1, $2, $3)",
                link_id,
                user_agent,
                referrer,
            )

    async def count_clicks(self, link_id: int) -> int:
        async with self.pool.acquire() as conn:
            count = await conn.fetchval("SELECT COUNT(*) FROM clicks WHERE link_id = $1", link_id)
            return int(count or 0)

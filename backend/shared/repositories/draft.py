"""Repository for drafts table."""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg

from shared.models.draft import DRAFT_PENDING, Draft

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id::text AS id, stream_id, owner_id, title, target_url, image_url, status, "
    "grace_seconds, timeout_action, resolved_by, resolved_at, created_at"
)


class DraftRepository:
    """Pure SQL operations for drafts.

    ``transition`` is the only way a draft leaves ``pending``: a single
    UPDATE guarded by ``status = 'pending'``. Whoever gets the row back
    owns the terminal side effects; everyone else gets None.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create_draft(
        self,
        stream_id: int,
        owner_id: str,
        title: str,
        target_url: str,
        image_url: str | None,
        grace_seconds: int,
        timeout_action: str,
    ) -> Draft | None:
        """Insert the stream's draft. Returns None if the stream already has one."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO drafts
                    (stream_id, owner_id, title, target_url, image_url,
                     grace_seconds, timeout_action)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (stream_id) DO NOTHING
                RETURNING {_COLUMNS}
                """,
                stream_id,
                owner_id,
                title,
                target_url,
                image_url,
                grace_seconds,
                timeout_action,
            )
            return Draft(**dict(row)) if row else None

    async def get_draft(self, draft_id: str, owner_id: str | None = None) -> Draft | None:
        async with self.pool.acquire() as conn:
            if owner_id is None:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM drafts WHERE id = $1::uuid", draft_id
                )
            else:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM drafts WHERE id = $1::uuid AND owner_id = $2",
                    draft_id,
                    owner_id,
                )
            return Draft(**dict(row)) if row else None

    async def transition(
        self,
        draft_id: str,
        to_status: str,
        resolved_by: str,
        owner_id: str | None = None,
    ) -> Draft | None:
        """pending → *to_status*, only if still pending (and owned, when scoped)."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE drafts
                SET status = $2, resolved_by = $3, resolved_at = NOW()
                WHERE id = $1::uuid
                  AND status = '{DRAFT_PENDING}'
                  AND ($4::text IS NULL OR owner_id = $4)
                RETURNING {_COLUMNS}
                """,
                draft_id,
                to_status,
                resolved_by,
                owner_id,
            )
            return Draft(**dict(row)) if row else None

    async def list_overdue(self, now: datetime, slack_seconds: int = 0) -> list[Draft]:
        """Pending drafts whose grace window (+ slack) has elapsed."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM drafts
                WHERE status = '{DRAFT_PENDING}'
                  AND created_at + make_interval(secs => grace_seconds + $2) <= $1
                ORDER BY created_at
                """,
                now,
                slack_seconds,
            )
            return [Draft(**dict(r)) for r in rows]

    async def list_pending(self) -> list[Draft]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM drafts WHERE status = '{DRAFT_PENDING}' ORDER BY created_at"
            )
            return [Draft(**dict(r)) for r in rows]

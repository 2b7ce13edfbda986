"""Repository for deliveries table."""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg

from shared.models.delivery import DELIVERY_FAILED, DELIVERY_QUEUED, Delivery

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, owner_id, idempotency_key, channel, status, body_text, draft_id::text AS draft_id, "
    "stream_id, link_id, template_id, external_post_id, error, latency_ms, created_at"
)


class DeliveryRepository:
    """Pure SQL operations for the delivery ledger.

    Rows are keyed by a unique idempotency key; every insert is
    ON CONFLICT DO NOTHING so a retried attempt cannot create a second row.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def insert(
        self,
        *,
        owner_id: str,
        idempotency_key: str,
        channel: str,
        status: str = DELIVERY_QUEUED,
        body_text: str = "",
        draft_id: str | None = None,
        stream_id: int | None = None,
        template_id: str | None = None,
    ) -> Delivery | None:
        """Insert a delivery. Returns None if the idempotency key already exists."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO deliveries
                    (owner_id, idempotency_key, channel, status, body_text,
                     draft_id, stream_id, template_id)
                VALUES ($1, $2, $3, $4, $5, $6::uuid, $7, $8)
                ON CONFLICT (idempotency_key) DO NOTHING
                RETURNING {_COLUMNS}
                """,
                owner_id,
                idempotency_key,
                channel,
                status,
                body_text,
                draft_id,
                stream_id,
                template_id,
            )
            return Delivery(**dict(row)) if row else None

    async def complete(
        self,
        delivery_id: int,
        *,
        status: str,
        body_text: str,
        external_post_id: str | None = None,
        error: str | None = None,
        latency_ms: int | None = None,
        link_id: int | None = None,
    ) -> Delivery | None:
        """Record the sender's outcome on a queued delivery."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE deliveries SET
                    status = $2, body_text = $3, external_post_id = $4,
                    error = $5, latency_ms = $6, link_id = $7
                WHERE id = $1 AND status = '{DELIVERY_QUEUED}'
                RETURNING {_COLUMNS}
                """,
                delivery_id,
                status,
                body_text,
                external_post_id,
                error,
                latency_ms,
                link_id,
            )
            return Delivery(**dict(row)) if row else None

    async def get_by_key(self, idempotency_key: str) -> Delivery | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM deliveries WHERE idempotency_key = $1",
                idempotency_key,
            )
            return Delivery(**dict(row)) if row else None

    async def list_with_clicks(
        self, owner_id: str, since: datetime, statuses: tuple[str, ...] = ("sent",)
    ) -> list[dict]:
        """Owner's deliveries since *since* with their link click counts."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT d.id, d.draft_id::text AS draft_id, d.stream_id, d.link_id,
                       d.channel, d.status, d.template_id, d.external_post_id,
                       d.body_text, d.created_at,
                       COUNT(c.id) AS clicks
                FROM deliveries d
                LEFT JOIN clicks c ON c.link_id = d.link_id
                WHERE d.owner_id = $1
                  AND d.created_at >= $2
                  AND d.status = ANY($3::text[])
                GROUP BY d.id
                ORDER BY d.created_at DESC
                """,
                owner_id,
                since,
                list(statuses),
            )
            return [dict(r) for r in rows]

    async def count_outcomes(self, since: datetime) -> tuple[int, int]:
        """(attempted, failed) post attempts since *since* across all owners."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT COUNT(*) FILTER (WHERE status IN ('sent', '{DELIVERY_FAILED}')) AS total,
                       COUNT(*) FILTER (WHERE status = '{DELIVERY_FAILED}') AS failed
                FROM deliveries
                WHERE created_at >= $1
                """,
                since,
            )
            return int(row["total"]), int(row["failed"])

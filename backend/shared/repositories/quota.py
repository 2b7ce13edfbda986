"""Repository for quotas and quota_global tables."""

from __future__ import annotations

import logging
from datetime import date

import asyncpg

from shared.models.quota import GlobalQuota, Quota

logger = logging.getLogger(__name__)

_COLUMNS = "owner_id, monthly_limit, monthly_used, global_monthly_used, reset_on, updated_at"


class _InsufficientGlobalQuota(Exception):
    """Raised inside the consume transaction to roll back the owner increment."""


class QuotaRepository:
    """Pure SQL operations for monthly posting counters.

    ``consume`` increments the owner row and the global row inside one
    transaction, each with a ``WHERE used + n <= limit`` guard. Row locks
    are always taken in the same order (owner, then global).
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def ensure_quota(self, owner_id: str, monthly_limit: int, reset_on: date) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO quotas (owner_id, monthly_limit, reset_on)
                VALUES ($1, $2, $3)
                ON CONFLICT (owner_id) DO NOTHING
                """,
                owner_id,
                monthly_limit,
                reset_on,
            )

    async def get_quota(self, owner_id: str) -> Quota | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM quotas WHERE owner_id = $1", owner_id)
            return Quota(**dict(row)) if row else None

    async def get_global(self) -> GlobalQuota:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT used, monthly_limit, reset_on FROM quota_global WHERE id = 1"
            )
            if row is None:
                raise RuntimeError("quota_global row missing; run migrations")
            return GlobalQuota(**dict(row))

    async def consume(self, owner_id: str, amount: int = 1) -> bool:
        """Atomically take *amount* from both the owner and the global counter."""
        async with self.pool.acquire() as conn:
            try:
                async with conn.transaction():
                    owner_ok = await conn.fetchval(
                        """
                        UPDATE quotas
                        SET monthly_used = monthly_used + $2, updated_at = NOW()
                        WHERE owner_id = $1 AND monthly_used + $2 <= monthly_limit
                        RETURNING monthly_used
                        """,
                        owner_id,
                        amount,
                    )
                    if owner_ok is None:
                        return False

                    global_used = await conn.fetchval(
                        """
                        UPDATE quota_global SET used = used + $1
                        WHERE id = 1 AND used + $1 <= monthly_limit
                        RETURNING used
                        """,
                        amount,
                    )
                    if global_used is None:
                        raise _InsufficientGlobalQuota()

                    await conn.execute(
                        "UPDATE quotas SET global_monthly_used = $2 WHERE owner_id = $1",
                        owner_id,
                        global_used,
                    )
                    return True
            except _InsufficientGlobalQuota:
                return False

    async def reset_due(self, today: date, next_reset: date) -> int:
        """Zero counters whose reset_on has passed. Returns owner rows reset."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    """
                    UPDATE quotas
                    SET monthly_used = 0, global_monthly_used = 0,
                        reset_on = $2, updated_at = NOW()
                    WHERE reset_on <= $1
                    """,
                    today,
                    next_reset,
                )
                await conn.execute(
                    "UPDATE quota_global SET used = 0, reset_on = $2 WHERE id = 1 AND reset_on <= $1",
                    today,
                    next_reset,
                )
        return int(result.split()[-1])

    async def set_global_limit(self, monthly_limit: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE quota_global SET monthly_limit = $1 WHERE id = 1", monthly_limit
            )

"""Repository for owner_settings and x_connections tables."""

from __future__ import annotations

import logging

import asyncpg

from shared.cache import AsyncTTLCache, cached
from shared.models.owner import OwnerSettings

logger = logging.getLogger(__name__)

# Settings change rarely; writes through this repository invalidate.
_settings_cache = AsyncTTLCache(maxsize=256, ttl=300)
_broadcaster_cache = AsyncTTLCache(maxsize=256, ttl=300)

_COLUMNS = (
    "owner_id, broadcaster_id, broadcaster_login, grace_seconds, timeout_action, "
    "default_template, fallback_webhook_url, created_at, updated_at"
)


class OwnerRepository:
    """Pure SQL operations for per-owner settings."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @cached(
        cache=_settings_cache,
        key_func=lambda self, owner_id: f"settings:{owner_id}",
        cache_none=False,
    )
    async def get_settings(self, owner_id: str) -> OwnerSettings | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM owner_settings WHERE owner_id = $1",
                owner_id,
            )
            return OwnerSettings(**dict(row)) if row else None

    @cached(
        cache=_broadcaster_cache,
        key_func=lambda self, broadcaster_id: f"broadcaster:{broadcaster_id}",
        cache_none=False,
    )
    async def get_by_broadcaster(self, broadcaster_id: str) -> OwnerSettings | None:
        """Map an EventSub broadcaster_user_id to its owner."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM owner_settings WHERE broadcaster_id = $1",
                broadcaster_id,
            )
            return OwnerSettings(**dict(row)) if row else None

    async def update_settings(
        self,
        owner_id: str,
        *,
        grace_seconds: int | None = None,
        timeout_action: str | None = None,
        default_template: str | None = None,
        fallback_webhook_url: str | None = None,
    ) -> OwnerSettings | None:
        """Patch the given fields. Returns None when the owner has no row."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE owner_settings SET
                    grace_seconds        = COALESCE($2, grace_seconds),
                    timeout_action       = COALESCE($3, timeout_action),
                    default_template     = COALESCE($4, default_template),
                    fallback_webhook_url = COALESCE($5, fallback_webhook_url),
                    updated_at           = NOW()
                WHERE owner_id = $1
                RETURNING {_COLUMNS}
                """,
                owner_id,
                grace_seconds,
                timeout_action,
                default_template,
                fallback_webhook_url,
            )
        if row is None:
            return None
        settings = OwnerSettings(**dict(row))
        _settings_cache.invalidate(f"settings:{owner_id}")
        _broadcaster_cache.invalidate(f"broadcaster:{settings.broadcaster_id}")
        return settings

    async def get_x_token(self, owner_id: str) -> str | None:
        """Primary-social access token written by the identity layer."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT access_token FROM x_connections WHERE owner_id = $1",
                owner_id,
            )

"""asyncpg pool lifecycle for the CastCue API and worker.

Two Postgres pooler modes are recognised from the DSN port:
  - session     (5432): long-lived clients, prepared statements allowed
  - transaction (6543): PgBouncer transaction pooling, statement cache off
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, ClassVar

import asyncpg

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Pool sizing, timeouts and connect retry policy."""

    min_size: int = 1
    max_size: int = 5
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_inactive_connection_lifetime: float = 30.0
    max_retries: int = 3
    retry_delay: float = 3.0
    ssl: str = "require"

    tcp_keepalives_idle: int = 30
    tcp_keepalives_interval: int = 10
    tcp_keepalives_count: int = 3

    # api: bursty webhook and redirect traffic
    # worker: sampler fan-out plus one held LISTEN connection per channel
    _SERVICE_PRESETS: ClassVar[dict[str, dict]] = {
        "api": {"min_size": 0, "max_size": 10},
        "worker": {"min_size": 2, "max_size": 8},
    }

    @classmethod
    def for_service(cls, service: str, **overrides) -> PoolConfig:
        """Build a config from the named service preset plus overrides.

        Unknown keys are ignored so callers can pass settings through
        without filtering them first.
        """
        allowed = {f.name for f in fields(cls) if not f.name.startswith("_")}
        values = {**cls._SERVICE_PRESETS.get(service, {}), **overrides}
        return cls(**{k: v for k, v in values.items() if k in allowed})


def detect_pooler_mode(database_url: str) -> str:
    return "transaction" if ":6543" in database_url else "session"


class DatabaseManager:
    """Owns one asyncpg pool: connect with retry, health check, keepalive."""

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self.pooler_mode = detect_pooler_mode(database_url)
        self._pool: asyncpg.Pool | None = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        """The live pool. Raises RuntimeError before connect()."""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool

    async def _set_statement_timeout(self, conn: asyncpg.Connection) -> None:
        timeout_ms = int(self.config.command_timeout * 1000)
        await conn.execute(f"SET statement_timeout = {timeout_ms}")

    def _pool_kwargs(self) -> dict[str, Any]:
        cfg = self.config
        kwargs: dict[str, Any] = {
            "dsn": self.database_url,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "ssl": cfg.ssl,
        }
        if self.pooler_mode == "transaction":
            # PgBouncer reassigns server connections per transaction
            kwargs.update(min_size=0, statement_cache_size=0, max_inactive_connection_lifetime=0)
            return kwargs

        kwargs.update(
            min_size=cfg.min_size,
            statement_cache_size=100,
            max_inactive_connection_lifetime=cfg.max_inactive_connection_lifetime,
            server_settings={
                "tcp_keepalives_idle": str(cfg.tcp_keepalives_idle),
                "tcp_keepalives_interval": str(cfg.tcp_keepalives_interval),
                "tcp_keepalives_count": str(cfg.tcp_keepalives_count),
            },
            init=self._set_statement_timeout,
        )
        return kwargs

    async def connect(self) -> None:
        """Create and verify the pool, retrying with exponential backoff."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        kwargs = self._pool_kwargs()
        cfg = self.config
        logger.info(f"Connecting to database ({self.pooler_mode} pooler)")

        for attempt in range(1, cfg.max_retries + 1):
            try:
                self._pool = await asyncpg.create_pool(**kwargs)
                async with self._pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                logger.info(
                    f"Database pool ready (mode={self.pooler_mode}, "
                    f"size={kwargs['min_size']}-{cfg.max_size})"
                )
                return
            except Exception as e:
                await self._discard_pool()
                if attempt == cfg.max_retries:
                    logger.exception(
                        f"Database connection failed after {attempt} attempts: "
                        f"{type(e).__name__}: {e or repr(e)}"
                    )
                    raise
                delay = cfg.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Database connection attempt {attempt}/{cfg.max_retries} failed: "
                    f"{type(e).__name__}: {e or repr(e)}, retrying in {delay}s"
                )
                await asyncio.sleep(delay)

    async def _discard_pool(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        try:
            await pool.close()
        except Exception as e:
            logger.debug(f"Ignoring error while discarding pool: {e}")

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        try:
            await self._pool.close()
            logger.info("Database pool closed")
        except Exception as e:
            logger.exception(f"Error closing database pool: {e}")
        finally:
            self._pool = None

    async def check_health(self) -> bool:
        """True when a pooled connection answers ``SELECT 1`` within 2s."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=2.0) as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False

    async def keepalive(self, interval: int = 15, max_interval: int = 120) -> None:
        """Ping the pool forever so idle connections survive the pooler timeout.

        interval < max_inactive_connection_lifetime < pooler idle timeout.
        Failures back off up to ``max_interval`` and are logged at most
        three times until the pool recovers.
        """
        delay = interval
        failures = 0
        while True:
            await asyncio.sleep(delay)
            if self._pool is None:
                continue
            if await self.check_health():
                if failures:
                    logger.info(f"Pool keepalive recovered after {failures} failures")
                failures = 0
                delay = interval
                continue

            failures += 1
            if failures <= 3:
                logger.warning(f"Pool keepalive failed ({failures})")
            elif failures == 4:
                logger.warning("Pool keepalive still failing, suppressing until recovery")
            delay = min(interval * (2 ** min(failures - 1, 3)), max_interval)

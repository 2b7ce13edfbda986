"""Repository for sampling_metrics table."""

from __future__ import annotations

from datetime import datetime

import asyncpg

from shared.models.sampling import SamplingRun

_COLUMNS = (
    "id, active_streams_count, successful_samples, failed_samples, ended_streams, "
    "execution_time_ms, error_message, source, executed_at"
)


class SamplingMetricsRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def record_run(
        self,
        *,
        active_streams_count: int,
        successful_samples: int,
        failed_samples: int,
        ended_streams: int,
        execution_time_ms: int,
        error_message: str | None,
        source: str,
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO sampling_metrics
                    (active_streams_count, successful_samples, failed_samples,
                     ended_streams, execution_time_ms, error_message, source)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                active_streams_count,
                successful_samples,
                failed_samples,
                ended_streams,
                execution_time_ms,
                error_message,
                source,
            )

    async def list_since(self, since: datetime) -> list[SamplingRun]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM sampling_metrics WHERE executed_at >= $1 "
                "ORDER BY executed_at DESC",
                since,
            )
            return [SamplingRun(**dict(r)) for r in rows]

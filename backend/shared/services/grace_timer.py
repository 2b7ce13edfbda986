"""Grace timers: in-process scheduler and the NOTIFY signal that drives it."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

import asyncpg

logger = logging.getLogger(__name__)

CHANNEL_DRAFT_PENDING = "draft_pending"
CHANNEL_DRAFT_RESOLVED = "draft_resolved"

MIN_GRACE_SECONDS = 30
MAX_GRACE_SECONDS = 300


def clamp_grace(seconds: int) -> int:
    return max(MIN_GRACE_SECONDS, min(MAX_GRACE_SECONDS, seconds))


class GraceTimers(Protocol):
    async def arm(
        self,
        draft_id: str,
        owner_id: str,
        grace_seconds: int,
        timeout_action: str,
        *,
        title: str | None = None,
    ) -> None: ...

    async def cancel(self, draft_id: str) -> None: ...


class GraceTimerScheduler:
    """One sleeping asyncio task per pending draft.

    ``on_expire(draft_id)`` runs when the window elapses. Cancellation is
    best-effort; a timer that fires after a human resolved the draft is
    harmless because the terminal transition is guarded.
    """

    def __init__(self, on_expire: Callable[[str], Awaitable[object]]) -> None:
        self._on_expire = on_expire
        self._tasks: dict[str, asyncio.Task] = {}

    async def arm(
        self,
        draft_id: str,
        owner_id: str,
        grace_seconds: float,
        timeout_action: str,
        *,
        title: str | None = None,
    ) -> None:
        previous = self._tasks.pop(draft_id, None)
        if previous is not None and not previous.done():
            previous.cancel()

        delay = max(0.0, float(grace_seconds))
        task = asyncio.create_task(self._run(draft_id, delay), name=f"grace-{draft_id}")
        self._tasks[draft_id] = task
        logger.info(
            f"Armed grace timer for draft {draft_id} (owner={owner_id}, "
            f"{delay:.0f}s, on timeout: {timeout_action})"
        )

    async def _run(self, draft_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self._on_expire(draft_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Grace timer for draft {draft_id} failed: {e}")
        finally:
            if self._tasks.get(draft_id) is asyncio.current_task():
                del self._tasks[draft_id]

    async def cancel(self, draft_id: str) -> None:
        task = self._tasks.pop(draft_id, None)
        if task is not None and not task.done():
            task.cancel()
            logger.info(f"Cancelled grace timer for draft {draft_id}")

    def is_armed(self, draft_id: str) -> bool:
        return draft_id in self._tasks

    @property
    def armed_count(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Grace timer scheduler stopped ({len(tasks)} timer(s) cancelled)")


class PgNotifyGraceTimers:
    """Asks the worker (over NOTIFY) to arm or cancel a timer.

    Used by the API process, which holds no long-lived tasks itself.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def arm(
        self,
        draft_id: str,
        owner_id: str,
        grace_seconds: int,
        timeout_action: str,
        *,
        title: str | None = None,
    ) -> None:
        payload = json.dumps(
            {
                "draft_id": draft_id,
                "owner_id": owner_id,
                "title": title,
                "grace_seconds": grace_seconds,
                "timeout_action": timeout_action,
            }
        )
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_notify($1, $2)", CHANNEL_DRAFT_PENDING, payload)

    async def cancel(self, draft_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_notify($1, $2)", CHANNEL_DRAFT_RESOLVED, draft_id)

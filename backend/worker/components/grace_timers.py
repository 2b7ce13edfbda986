"""Grace timer component: arms and cancels draft timers from NOTIFY events."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import asyncpg

from shared.services.grace_timer import CHANNEL_DRAFT_PENDING, CHANNEL_DRAFT_RESOLVED
from worker.core import Component, pg_listen


class GraceTimerComponent(Component):
    """Keeps one in-process timer per pending draft.

    ``draft_pending`` arms a timer, ``draft_resolved`` cancels it. Pending
    drafts found at startup are re-armed with whatever is left of their
    window; anything lost in between is picked up by the draft sweep.
    """

    name = "GraceTimers"

    async def component_load(self) -> None:
        await self._rearm_pending()
        pool = self.worker.pool
        self.spawn(pg_listen(pool, CHANNEL_DRAFT_PENDING, self._handle_pending), "listen-pending")
        self.spawn(pg_listen(pool, CHANNEL_DRAFT_RESOLVED, self._handle_resolved), "listen-resolved")
        self.logger.info("GraceTimerComponent loaded, listening for draft events")

    async def component_unload(self) -> None:
        await super().component_unload()
        await self.worker.timers.shutdown()

    async def _rearm_pending(self) -> None:
        try:
            drafts = await self.worker.drafts.list_pending()
        except Exception as e:
            self.logger.warning(f"Could not load pending drafts for re-arm: {e}")
            return

        now = datetime.now(timezone.utc)
        for draft in drafts:
            elapsed = (now - draft.created_at).total_seconds() if draft.created_at else 0
            remaining = max(0.0, draft.grace_seconds - elapsed)
            await self.worker.timers.arm(
                draft.id, draft.owner_id, remaining, draft.timeout_action, title=draft.title
            )
        if drafts:
            self.logger.info(f"Re-armed {len(drafts)} pending draft timer(s)")

    async def _handle_pending(
        self, connection: asyncpg.Connection, pid: int, channel: str, payload: str
    ) -> None:
        try:
            data = json.loads(payload)
            await self.worker.timers.arm(
                data["draft_id"],
                data["owner_id"],
                int(data["grace_seconds"]),
                data.get("timeout_action", "post"),
                title=data.get("title"),
            )
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Ignoring malformed {channel} payload: {e}")

    async def _handle_resolved(
        self, connection: asyncpg.Connection, pid: int, channel: str, payload: str
    ) -> None:
        await self.worker.timers.cancel(payload.strip())

    def status(self) -> dict:
        return {"armed_timers": self.worker.timers.armed_count}

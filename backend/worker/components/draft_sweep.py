"""Draft sweep component: resolves drafts whose grace timer was lost."""

from __future__ import annotations

from datetime import datetime, timezone

from worker.core import Component, run_every


class DraftSweepComponent(Component):
    name = "DraftSweep"

    def __init__(self, worker) -> None:
        super().__init__(worker)
        self.resolved_total = 0

    async def component_load(self) -> None:
        interval = self.worker.settings.draft_sweep_interval
        self.spawn(
            run_every(self.logger, interval, self._sweep, label="Draft sweep", initial_delay=interval),
            "loop",
        )
        self.logger.info(f"DraftSweepComponent loaded (interval={interval}s)")

    async def _sweep(self) -> None:
        resolved = await self.worker.controller.sweep_overdue(
            datetime.now(timezone.utc), self.worker.settings.draft_sweep_slack_seconds
        )
        self.resolved_total += resolved

    def status(self) -> dict:
        return {"swept_drafts": self.resolved_total}

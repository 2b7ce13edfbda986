"""Quota reset component: zeroes monthly counters once their reset date passes."""

from __future__ import annotations

from worker.core import Component, run_every


class QuotaResetComponent(Component):
    name = "QuotaReset"

    async def component_load(self) -> None:
        interval = self.worker.settings.quota_reset_check_interval
        self.spawn(
            run_every(self.logger, interval, self.worker.quota.reset_monthly, label="Quota reset"),
            "loop",
        )
        self.logger.info(f"QuotaResetComponent loaded (check every {interval}s)")

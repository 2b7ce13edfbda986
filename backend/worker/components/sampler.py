"""Sampler component: periodic viewer-count capture for live streams."""

from __future__ import annotations

from shared.services.sampling import SamplingJobResult
from worker.core import Component, run_every


class SamplerComponent(Component):
    name = "Sampler"

    def __init__(self, worker) -> None:
        super().__init__(worker)
        self.last_result: SamplingJobResult | None = None

    async def component_load(self) -> None:
        interval = self.worker.settings.sampling_interval
        self.spawn(
            run_every(self.logger, interval, self._run, label="Sampling run"),
            "loop",
        )
        self.logger.info(f"SamplerComponent loaded (interval={interval}s)")

    async def _run(self) -> None:
        self.last_result = await self.worker.sampling.run_sampling_job(source="worker")

    def status(self) -> dict:
        if self.last_result is None:
            return {"last_sampling": None}
        r = self.last_result
        return {
            "last_sampling": {
                "active_streams": r.active_streams,
                "sampled": r.successful,
                "ended": r.ended,
                "failed": r.failed,
                "execution_time_ms": r.execution_time_ms,
            }
        }

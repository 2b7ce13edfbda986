"""Data model for sampling_metrics table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class SamplingRun:
    """Execution metrics of one sampling job run."""

    id: int
    active_streams_count: int
    successful_samples: int
    failed_samples: int
    execution_time_ms: int
    ended_streams: int = 0
    error_message: str | None = None
    source: str = "worker"  # 'worker' | 'cron'
    executed_at: datetime | None = None

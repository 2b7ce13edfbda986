"""Data models for quotas and quota_global tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass
class Quota:
    """Per-owner monthly posting counters."""

    owner_id: str
    monthly_limit: int
    monthly_used: int
    global_monthly_used: int
    reset_on: date
    updated_at: datetime | None = None


@dataclass
class GlobalQuota:
    """The single shared counter all owners draw from."""

    used: int
    monthly_limit: int
    reset_on: date

"""Quota Manager: per-owner and global monthly posting allowance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from shared.repositories.quota import QuotaRepository

logger = logging.getLogger(__name__)

DEFAULT_OWNER_LIMIT = 12
DEFAULT_GLOBAL_LIMIT = 400

WARNING_NONE = "none"
WARNING_LOW = "low"
WARNING_CRITICAL = "critical"


def next_reset_date(today: date) -> date:
    """First day of the month after *today*."""
    if today.month == 12:
        return date(today.year + 1, 1, 1)
    return date(today.year, today.month + 1, 1)


def warning_level(global_used: int, global_limit: int) -> str:
    """<60% none, <90% low, otherwise critical."""
    if global_limit <= 0:
        return WARNING_CRITICAL
    ratio = global_used / global_limit
    if ratio < 0.6:
        return WARNING_NONE
    if ratio < 0.9:
        return WARNING_LOW
    return WARNING_CRITICAL


@dataclass
class QuotaStatus:
    user_used: int
    user_limit: int
    user_remaining: int
    global_used: int
    global_limit: int
    global_remaining: int
    reset_on: date
    can_post: bool
    warning_level: str  # 'none' | 'low' | 'critical'

    @property
    def should_fallback(self) -> bool:
        """True when posts should go to the fallback channel up front."""
        return not self.can_post or self.warning_level == WARNING_CRITICAL


class QuotaManager:
    """Atomic quota consumption on top of ``QuotaRepository``.

    The check-and-increment happens inside a single database transaction;
    this class never reads remaining capacity before writing.
    """

    def __init__(
        self,
        repo: QuotaRepository,
        *,
        owner_limit: int = DEFAULT_OWNER_LIMIT,
        global_limit: int = DEFAULT_GLOBAL_LIMIT,
    ) -> None:
        self.repo = repo
        self.owner_limit = owner_limit
        self.global_limit = global_limit

    @staticmethod
    def _today() -> date:
        return datetime.now(timezone.utc).date()

    async def sync_global_limit(self) -> None:
        """Apply the configured global cap to the central counter row."""
        await self.repo.set_global_limit(self.global_limit)

    async def try_consume(self, owner_id: str, amount: int = 1) -> bool:
        await self.repo.ensure_quota(owner_id, self.owner_limit, next_reset_date(self._today()))
        consumed = await self.repo.consume(owner_id, amount)
        if not consumed:
            logger.info(f"Quota denied for owner {owner_id} (amount={amount})")
        return consumed

    async def get_status(self, owner_id: str) -> QuotaStatus:
        await self.repo.ensure_quota(owner_id, self.owner_limit, next_reset_date(self._today()))
        quota = await self.repo.get_quota(owner_id)
        glob = await self.repo.get_global()

        user_used = quota.monthly_used if quota else 0
        user_limit = quota.monthly_limit if quota else self.owner_limit
        user_remaining = max(0, user_limit - user_used)
        global_remaining = max(0, glob.monthly_limit - glob.used)

        return QuotaStatus(
            user_used=user_used,
            user_limit=user_limit,
            user_remaining=user_remaining,
            global_used=glob.used,
            global_limit=glob.monthly_limit,
            global_remaining=global_remaining,
            reset_on=quota.reset_on if quota else glob.reset_on,
            can_post=user_remaining > 0 and global_remaining > 0,
            warning_level=warning_level(glob.used, glob.monthly_limit),
        )

    async def reset_monthly(self, today: date | None = None) -> int:
        """Zero every counter whose reset date has passed. Safe to re-run."""
        today = today or self._today()
        count = await self.repo.reset_due(today, next_reset_date(today))
        if count:
            logger.info(f"Monthly quota reset: {count} owner row(s) reset (today={today})")
        else:
            logger.debug(f"Monthly quota reset: nothing due (today={today})")
        return count

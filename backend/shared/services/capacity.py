"""Capacity Recommendation Engine and operator health statistics."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone

from shared.models.sampling import SamplingRun
from shared.repositories.delivery import DeliveryRepository
from shared.repositories.quota import QuotaRepository
from shared.repositories.sampling import SamplingMetricsRepository
from shared.repositories.stream import StreamRepository

logger = logging.getLogger(__name__)

# Concurrent live streams one scheduler tier can sample within its interval
FREE_CAP = 10
HARD_CAP = 200

# Share of registered owners live at any moment
CONCURRENCY_RATIO = 0.0833

PLAN_FREE = "GitHub Actions Free"
PLAN_PRO = "Vercel Pro"
PLAN_PRO_BATCH = "Vercel Pro + Batch"

STATUS_FREE_OK = "free-ok"
STATUS_PREPARE = "prepare-migration"
STATUS_MIGRATE = "migrate-now"
STATUS_CRITICAL = "critical"


@dataclass
class RunMetrics:
    total_runs: int = 0
    avg_active_streams: float = 0.0
    avg_execution_time_ms: int = 0
    max_execution_time_ms: int = 0
    error_rate: float = 0.0  # percent
    peak_active_streams: int = 0


@dataclass
class Recommendation:
    status: str  # 'free-ok' | 'prepare-migration' | 'migrate-now' | 'critical'
    reason: str
    current_plan: str
    recommended_plan: str
    estimated_cost: int
    days_until_limit: int | None


def summarize_runs(runs: Sequence[SamplingRun]) -> RunMetrics:
    if not runs:
        return RunMetrics()
    total = len(runs)
    errors = sum(1 for r in runs if r.error_message is not None)
    return RunMetrics(
        total_runs=total,
        avg_active_streams=round(sum(r.active_streams_count for r in runs) / total, 1),
        avg_execution_time_ms=round(sum(r.execution_time_ms for r in runs) / total),
        max_execution_time_ms=max(r.execution_time_ms for r in runs),
        error_rate=round(errors / total * 100, 1),
        peak_active_streams=max(r.active_streams_count for r in runs),
    )


def estimate_total_users(avg_concurrent: float) -> int:
    return round(avg_concurrent / CONCURRENCY_RATIO)


def _days_until(target: int, avg7: float, avg30: float) -> int | None:
    if avg30 <= 0 or avg7 <= 0:
        return None
    growth = (avg7 - avg30) / avg30
    if growth <= 0:
        return None
    per_day = avg7 * growth / 7
    return max(0, round((target - avg7) / per_day))


def recommend(week: RunMetrics, month: RunMetrics) -> Recommendation:
    """Tier the current load. Pure; first matching tier wins."""
    peak = max(week.peak_active_streams, month.peak_active_streams)
    avg7 = week.avg_active_streams
    avg30 = month.avg_active_streams
    users = estimate_total_users(avg30)

    if peak > HARD_CAP:
        current = PLAN_PRO_BATCH
    elif peak > FREE_CAP:
        current = PLAN_PRO
    else:
        current = PLAN_FREE

    if peak >= HARD_CAP:
        return Recommendation(
            status=STATUS_CRITICAL,
            reason=(
                f"Peak concurrent streams reached {peak}. "
                "Sampling must move to batch processing."
            ),
            current_plan=current,
            recommended_plan=PLAN_PRO_BATCH,
            estimated_cost=20,
            days_until_limit=None,
        )

    if peak >= FREE_CAP or avg7 >= FREE_CAP * 0.8:
        return Recommendation(
            status=STATUS_MIGRATE,
            reason=(
                f"Average concurrent streams is {avg7:.1f} "
                f"(estimated {users} users). Migrate to {PLAN_PRO} now."
            ),
            current_plan=current,
            recommended_plan=PLAN_PRO,
            estimated_cost=20,
            days_until_limit=_days_until(HARD_CAP, avg7, avg30),
        )

    if peak >= FREE_CAP * 0.7 or avg7 >= FREE_CAP * 0.6:
        return Recommendation(
            status=STATUS_PREPARE,
            reason=(
                f"Average concurrent streams is {avg7:.1f} "
                f"(estimated {users} users), approaching the free tier limit of {FREE_CAP}."
            ),
            current_plan=current,
            recommended_plan=PLAN_PRO,
            estimated_cost=20,
            days_until_limit=_days_until(FREE_CAP, avg7, avg30),
        )

    return Recommendation(
        status=STATUS_FREE_OK,
        reason=(
            f"Average concurrent streams is {avg7:.1f} "
            f"(estimated {users} users). {PLAN_FREE} is sufficient."
        ),
        current_plan=current,
        recommended_plan=PLAN_FREE,
        estimated_cost=0,
        days_until_limit=_days_until(FREE_CAP, avg7, avg30),
    )


# ==================== Health ====================


def sampling_health_status(minutes: float) -> str:
    if minutes <= 10:
        return "healthy"
    if minutes <= 15:
        return "warning"
    return "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CapacityService:
    """Reads operational metrics for the operator dashboard."""

    def __init__(
        self,
        metrics: SamplingMetricsRepository,
        streams: StreamRepository,
        deliveries: DeliveryRepository,
        quotas: QuotaRepository,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.metrics = metrics
        self.streams = streams
        self.deliveries = deliveries
        self.quotas = quotas
        self.clock = clock

    async def get_capacity(self) -> dict:
        now = self.clock()
        monthly_runs = await self.metrics.list_since(now - timedelta(days=30))
        week_cutoff = now - timedelta(days=7)
        weekly_runs = [r for r in monthly_runs if r.executed_at and r.executed_at >= week_cutoff]

        week = summarize_runs(weekly_runs)
        month = summarize_runs(monthly_runs)
        return {
            "weekly": asdict(week),
            "monthly": asdict(month),
            "peak": {
                "concurrent_streams": month.peak_active_streams,
                "estimated_total_users": estimate_total_users(month.avg_active_streams),
            },
            "recommendation": asdict(recommend(week, month)),
        }

    async def get_health(self) -> dict:
        now = self.clock()

        sampling: dict = {"last_run_at": None, "interval_minutes": None, "status": "error"}
        times = await self.streams.list_latest_sample_times(limit=2)
        if times:
            sampling["last_run_at"] = times[0].isoformat()
            if len(times) == 2:
                minutes = (times[0] - times[1]).total_seconds() / 60
                sampling["interval_minutes"] = round(minutes, 1)
            else:
                minutes = (now - times[0]).total_seconds() / 60
            sampling["status"] = sampling_health_status(minutes)

        glob = await self.quotas.get_global()
        today = now.date()
        quota_reset = {
            "next_reset_date": glob.reset_on.isoformat(),
            "status": "healthy" if _is_future_month(glob.reset_on, today) else "error",
        }

        total, failed = await self.deliveries.count_outcomes(now - timedelta(hours=24))
        error_rate = {
            "last_24_hours": round(failed / total * 100, 1) if total else 0.0,
            "failed_posts": failed,
            "total_posts": total,
        }
        return {"sampling": sampling, "quota_reset": quota_reset, "error_rate": error_rate}


def _is_future_month(reset_on: date, today: date) -> bool:
    return (reset_on.year, reset_on.month) > (today.year, today.month)

"""Scheduler-driven job endpoints"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException

from api.core.config import get_settings
from api.core.dependencies import (
    get_draft_controller,
    get_quota_manager,
    get_sampling_service,
    require_cron_secret,
)
from shared.services.drafts import DraftLifecycleController
from shared.services.quota import QuotaManager
from shared.services.sampling import SamplingService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)]
)


@router.post("/sampling")
async def run_sampling(sampling: SamplingService = Depends(get_sampling_service)) -> dict:
    try:
        result = await sampling.run_sampling_job(source="cron")
        return {
            "success": True,
            "active_streams": result.active_streams,
            "sampled": result.successful,
            "ended": result.ended,
            "failed": result.failed,
            "execution_time_ms": result.execution_time_ms,
        }
    except Exception as e:
        logger.exception(f"Cron sampling failed: {e}")
        raise HTTPException(status_code=500, detail="Sampling failed") from None


@router.post("/reset-quotas")
async def reset_quotas(quota: QuotaManager = Depends(get_quota_manager)) -> dict:
    try:
        count = await quota.reset_monthly()
        return {"success": True, "reset_count": count}
    except Exception as e:
        logger.exception(f"Cron quota reset failed: {e}")
        raise HTTPException(status_code=500, detail="Quota reset failed") from None


@router.post("/sweep-drafts")
async def sweep_drafts(
    controller: DraftLifecycleController = Depends(get_draft_controller),
) -> dict:
    try:
        resolved = await controller.sweep_overdue(
            datetime.now(UTC), get_settings().draft_sweep_slack_seconds
        )
        return {"success": True, "resolved": resolved}
    except Exception as e:
        logger.exception(f"Cron draft sweep failed: {e}")
        raise HTTPException(status_code=500, detail="Draft sweep failed") from None

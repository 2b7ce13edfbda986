"""Quota API routes"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.core.dependencies import get_current_owner_id, get_quota_manager
from shared.services.quota import QuotaManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/quota", tags=["quota"])


class QuotaResponse(BaseModel):
    user_used: int
    user_limit: int
    user_remaining: int
    global_used: int
    global_limit: int
    global_remaining: int
    reset_on: date
    can_post: bool
    warning_level: str


@router.get("", response_model=QuotaResponse)
async def get_quota(
    owner_id: str = Depends(get_current_owner_id),
    quota: QuotaManager = Depends(get_quota_manager),
) -> QuotaResponse:
    try:
        status = await quota.get_status(owner_id)
        return QuotaResponse(**vars(status))
    except Exception as e:
        logger.exception(f"Failed to get quota for {owner_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch quota") from None

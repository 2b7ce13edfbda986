"""Operator API routes"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.core.dependencies import get_capacity_service, require_admin
from shared.services.capacity import CapacityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/capacity")
async def get_capacity(capacity: CapacityService = Depends(get_capacity_service)) -> dict:
    """Sampling load summary and the tiered migration recommendation"""
    try:
        return await capacity.get_capacity()
    except Exception as e:
        logger.exception(f"Failed to compute capacity: {e}")
        raise HTTPException(status_code=500, detail="Failed to compute capacity") from None


@router.get("/health")
async def get_health(capacity: CapacityService = Depends(get_capacity_service)) -> dict:
    try:
        return await capacity.get_health()
    except Exception as e:
        logger.exception(f"Failed to compute health: {e}")
        raise HTTPException(status_code=500, detail="Failed to compute health") from None

"""Delivery report API routes"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.core.dependencies import get_current_owner_id, get_report_service
from shared.services.reports import ReportService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("")
async def get_report(
    days: int = Query(default=30, ge=1, le=365),
    owner_id: str = Depends(get_current_owner_id),
    reports: ReportService = Depends(get_report_service),
) -> dict:
    """
    Per-delivery clicks and lift for the authenticated owner

    Args:
        days: Number of days to look back (default: 30)
    """
    try:
        report = await reports.build(owner_id, days)
        logger.info(f"Owner {owner_id} requested report (days={days})")
        return report
    except Exception as e:
        logger.exception(f"Failed to build report: {e}")
        raise HTTPException(status_code=500, detail="Failed to build report") from None

"""Owner announcement settings"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.core.dependencies import get_current_owner_id, get_owner_repository
from shared.repositories import OwnerRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsResponse(BaseModel):
    broadcaster_id: str
    broadcaster_login: str
    grace_seconds: int
    timeout_action: str
    default_template: str | None
    fallback_webhook_url: str | None


class SettingsUpdate(BaseModel):
    grace_seconds: int | None = Field(default=None, ge=30, le=300)
    timeout_action: Literal["post", "skip"] | None = None
    default_template: str | None = Field(default=None, max_length=280)
    fallback_webhook_url: str | None = Field(default=None, pattern=r"^https://")


def _to_response(settings) -> SettingsResponse:
    return SettingsResponse(**{k: getattr(settings, k) for k in SettingsResponse.model_fields})


@router.get("", response_model=SettingsResponse)
async def get_settings(
    owner_id: str = Depends(get_current_owner_id),
    owners: OwnerRepository = Depends(get_owner_repository),
) -> SettingsResponse:
    try:
        settings = await owners.get_settings(owner_id)
        if settings is None:
            raise HTTPException(status_code=404, detail="Twitch account not connected")
        return _to_response(settings)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to get settings for {owner_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch settings") from None


@router.put("", response_model=SettingsResponse)
async def update_settings(
    update: SettingsUpdate,
    owner_id: str = Depends(get_current_owner_id),
    owners: OwnerRepository = Depends(get_owner_repository),
) -> SettingsResponse:
    try:
        settings = await owners.update_settings(owner_id, **update.model_dump())
        if settings is None:
            raise HTTPException(status_code=404, detail="Twitch account not connected")
        logger.info(f"Owner {owner_id} updated settings")
        return _to_response(settings)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to update settings for {owner_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update settings") from None

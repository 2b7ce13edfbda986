"""Draft decision API routes"""

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.core.dependencies import get_current_owner_id, get_draft_controller
from shared.errors import CastCueError
from shared.services.drafts import (
    ACTION_POST_EDITS,
    ACTION_POST_TEMPLATE,
    ACTION_SKIP,
    OUTCOME_ALREADY_RESOLVED,
    DraftLifecycleController,
    Resolution,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/drafts", tags=["drafts"])


# ============================================
# Request / Response Models
# ============================================


class PostDraftRequest(BaseModel):
    body: str | None = Field(default=None, min_length=1, max_length=280)
    template_id: str | None = None


class DraftResponse(BaseModel):
    id: str
    stream_id: int
    title: str
    target_url: str
    image_url: str | None
    status: str
    grace_seconds: int
    timeout_action: str
    resolved_by: str | None
    created_at: datetime | None


class DeliveryResponse(BaseModel):
    id: int
    channel: str
    status: str
    body_text: str
    external_post_id: str | None
    error: str | None
    latency_ms: int | None


class ResolutionResponse(BaseModel):
    outcome: str
    draft: DraftResponse
    delivery: DeliveryResponse | None


def _to_response(resolution: Resolution) -> ResolutionResponse:
    draft = resolution.draft
    delivery = resolution.delivery
    return ResolutionResponse(
        outcome=resolution.outcome,
        draft=DraftResponse(**{k: getattr(draft, k) for k in DraftResponse.model_fields}),
        delivery=(
            DeliveryResponse(**{k: getattr(delivery, k) for k in DeliveryResponse.model_fields})
            if delivery
            else None
        ),
    )


def _resolution_result(resolution: Resolution) -> JSONResponse | ResolutionResponse:
    if resolution.outcome == OUTCOME_ALREADY_RESOLVED:
        raise HTTPException(status_code=409, detail="Draft already processed")
    if resolution.send_failed:
        return JSONResponse(
            status_code=502,
            content={
                "error": resolution.delivery.error or "Failed to post",
                "retryable": True,
                "result": _to_response(resolution).model_dump(mode="json"),
            },
        )
    return _to_response(resolution)


# ============================================
# Endpoints
# ============================================


@router.get("/{draft_id}", response_model=DraftResponse)
async def get_draft(
    draft_id: UUID,
    owner_id: str = Depends(get_current_owner_id),
    controller: DraftLifecycleController = Depends(get_draft_controller),
) -> DraftResponse:
    try:
        draft = await controller.get_draft(str(draft_id), owner_id)
        return DraftResponse(**{k: getattr(draft, k) for k in DraftResponse.model_fields})
    except CastCueError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from None
    except Exception as e:
        logger.exception(f"Failed to get draft {draft_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch draft") from None


@router.post("/{draft_id}/post", response_model=ResolutionResponse)
async def post_draft(
    draft_id: UUID,
    request: PostDraftRequest | None = None,
    owner_id: str = Depends(get_current_owner_id),
    controller: DraftLifecycleController = Depends(get_draft_controller),
):
    """Post the draft, with the owner's template or with an edited body"""
    edited = request.body if request else None
    action = ACTION_POST_EDITS if edited else ACTION_POST_TEMPLATE
    try:
        resolution = await controller.resolve(
            str(draft_id),
            action,
            edited,
            owner_id=owner_id,
            template_id=request.template_id if request else None,
        )
        logger.info(f"Owner {owner_id} resolved draft {draft_id}: {resolution.outcome}")
        return _resolution_result(resolution)
    except HTTPException:
        raise
    except CastCueError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from None
    except Exception as e:
        logger.exception(f"Failed to post draft {draft_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to post draft") from None


@router.post("/{draft_id}/skip", response_model=ResolutionResponse)
async def skip_draft(
    draft_id: UUID,
    owner_id: str = Depends(get_current_owner_id),
    controller: DraftLifecycleController = Depends(get_draft_controller),
):
    try:
        resolution = await controller.resolve(str(draft_id), ACTION_SKIP, owner_id=owner_id)
        logger.info(f"Owner {owner_id} skipped draft {draft_id}")
        return _resolution_result(resolution)
    except HTTPException:
        raise
    except CastCueError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from None
    except Exception as e:
        logger.exception(f"Failed to skip draft {draft_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to skip draft") from None

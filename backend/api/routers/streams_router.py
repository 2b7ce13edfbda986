"""Stream sample and lift API routes"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.core.dependencies import (
    get_current_owner_id,
    get_sampling_service,
    get_stream_repository,
)
from shared.repositories import StreamRepository
from shared.services.sampling import SamplingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/streams", tags=["streams"])


class SampleResponse(BaseModel):
    taken_at: datetime
    viewer_count: int


class LiftResponse(BaseModel):
    baseline: float
    after_post: float
    lift: int
    raw_lift: int
    lift_percent: float
    method: str


class StreamLiftResponse(BaseModel):
    lift: LiftResponse | None
    session_lift: LiftResponse | None


async def _owned_stream(stream_id: int, owner_id: str, streams: StreamRepository) -> None:
    stream = await streams.get_stream(stream_id, owner_id)
    if stream is None:
        raise HTTPException(status_code=404, detail="Stream not found")


@router.get("/{stream_id}/samples", response_model=list[SampleResponse])
async def get_samples(
    stream_id: int,
    owner_id: str = Depends(get_current_owner_id),
    streams: StreamRepository = Depends(get_stream_repository),
) -> list[SampleResponse]:
    try:
        await _owned_stream(stream_id, owner_id, streams)
        samples = await streams.list_samples(stream_id)
        return [SampleResponse(taken_at=s.taken_at, viewer_count=s.viewer_count) for s in samples]
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to get samples for stream {stream_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch samples") from None


@router.get("/{stream_id}/lift", response_model=StreamLiftResponse)
async def get_lift(
    stream_id: int,
    post_time: datetime,
    owner_id: str = Depends(get_current_owner_id),
    streams: StreamRepository = Depends(get_stream_repository),
    sampling: SamplingService = Depends(get_sampling_service),
) -> StreamLiftResponse:
    """Windowed lift (canonical) and whole-session lift around *post_time*"""
    try:
        await _owned_stream(stream_id, owner_id, streams)
        windowed = await sampling.compute_windowed_lift(stream_id, post_time)
        session = await sampling.compute_lift(stream_id, post_time)

        def _model(result):
            if result is None:
                return None
            return LiftResponse(**{k: getattr(result, k) for k in LiftResponse.model_fields})

        return StreamLiftResponse(lift=_model(windowed), session_lift=_model(session))
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to compute lift for stream {stream_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to compute lift") from None

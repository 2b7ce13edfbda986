"""Twitch EventSub webhook"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import PlainTextResponse

from api.core.config import get_settings
from api.core.dependencies import get_stream_online_handler
from shared.services.eventsub import (
    HEADER_MESSAGE_ID,
    HEADER_MESSAGE_TYPE,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    MESSAGE_NOTIFICATION,
    MESSAGE_REVOCATION,
    MESSAGE_VERIFICATION,
    StreamOnlineEvent,
    StreamOnlineHandler,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/twitch")
async def twitch_eventsub(
    request: Request,
    handler: StreamOnlineHandler = Depends(get_stream_online_handler),
) -> Response:
    body = await request.body()
    headers = request.headers

    if not verify_signature(
        get_settings().eventsub_secret,
        headers.get(HEADER_MESSAGE_ID, ""),
        headers.get(HEADER_TIMESTAMP, ""),
        body,
        headers.get(HEADER_SIGNATURE, ""),
    ):
        logger.warning("EventSub message rejected: bad signature or stale timestamp")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON") from None

    message_type = headers.get(HEADER_MESSAGE_TYPE, "")
    subscription = payload.get("subscription", {})

    if message_type == MESSAGE_VERIFICATION:
        logger.info(f"EventSub verification for {subscription.get('type')}")
        return PlainTextResponse(payload.get("challenge", ""))

    if message_type == MESSAGE_REVOCATION:
        logger.warning(
            f"EventSub subscription revoked: {subscription.get('type')} "
            f"({subscription.get('status')})"
        )
        return Response(status_code=204)

    if message_type != MESSAGE_NOTIFICATION:
        raise HTTPException(status_code=400, detail="Unknown message type")

    if subscription.get("type") != "stream.online":
        logger.debug(f"Ignoring EventSub notification {subscription.get('type')}")
        return Response(status_code=204)

    try:
        event = StreamOnlineEvent.from_payload(payload.get("event", {}))
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"Missing event field: {e}") from None

    try:
        await handler.handle(event)
    except Exception as e:
        logger.exception(f"Failed to handle stream.online for {event.broadcaster_user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to handle event") from None

    return Response(status_code=204)

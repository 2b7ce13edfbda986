"""Twitch EventSub webhook handling: signature checks and stream.online."""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from shared.clients.twitch import TwitchHelixClient
from shared.errors import UpstreamError
from shared.models.draft import Draft
from shared.repositories.owner import OwnerRepository
from shared.repositories.stream import StreamRepository

from .drafts import DraftLifecycleController

logger = logging.getLogger(__name__)

HEADER_MESSAGE_ID = "twitch-eventsub-message-id"
HEADER_TIMESTAMP = "twitch-eventsub-message-timestamp"
HEADER_SIGNATURE = "twitch-eventsub-message-signature"
HEADER_MESSAGE_TYPE = "twitch-eventsub-message-type"

MESSAGE_VERIFICATION = "webhook_callback_verification"
MESSAGE_NOTIFICATION = "notification"
MESSAGE_REVOCATION = "revocation"

MAX_MESSAGE_AGE = timedelta(minutes=10)
FALLBACK_TITLE = "Untitled Stream"


def compute_signature(secret: str, message_id: str, timestamp: str, body: bytes) -> str:
    mac = hmac.new(secret.encode(), message_id.encode() + timestamp.encode() + body, hashlib.sha256)
    return "sha256=" + mac.hexdigest()


def _parse_timestamp(value: str) -> datetime | None:
    # Twitch sends RFC3339 with nanoseconds; trim to microseconds
    value = value.strip().replace("Z", "+00:00")
    if "." in value:
        head, _, rest = value.partition(".")
        frac, sign, tz = rest, "", ""
        for marker in ("+", "-"):
            if marker in rest:
                frac, sign, tz = rest.partition(marker)
                break
        value = f"{head}.{frac[:6]}{sign}{tz}"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def verify_signature(
    secret: str,
    message_id: str,
    timestamp: str,
    body: bytes,
    signature: str,
    *,
    now: datetime | None = None,
) -> bool:
    """Constant-time HMAC check plus replay window."""
    if not (secret and message_id and timestamp and signature):
        return False
    sent_at = _parse_timestamp(timestamp)
    if sent_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    if now - sent_at > MAX_MESSAGE_AGE:
        return False
    expected = compute_signature(secret, message_id, timestamp, body)
    return hmac.compare_digest(expected, signature)


@dataclass
class StreamOnlineEvent:
    stream_id: str
    broadcaster_user_id: str
    broadcaster_user_login: str
    started_at: datetime

    @classmethod
    def from_payload(cls, event: dict) -> StreamOnlineEvent:
        started = _parse_timestamp(event.get("started_at", "")) or datetime.now(timezone.utc)
        return cls(
            stream_id=str(event["id"]),
            broadcaster_user_id=str(event["broadcaster_user_id"]),
            broadcaster_user_login=event.get("broadcaster_user_login", ""),
            started_at=started,
        )


class StreamOnlineHandler:
    """Turns a ``stream.online`` notification into a Stream and a pending Draft."""

    def __init__(
        self,
        owners: OwnerRepository,
        streams: StreamRepository,
        controller: DraftLifecycleController,
        twitch: TwitchHelixClient,
    ) -> None:
        self.owners = owners
        self.streams = streams
        self.controller = controller
        self.twitch = twitch

    async def handle(self, event: StreamOnlineEvent) -> Draft | None:
        owner = await self.owners.get_by_broadcaster(event.broadcaster_user_id)
        if owner is None:
            logger.info(f"stream.online for unknown broadcaster {event.broadcaster_user_id}, ignored")
            return None

        title = FALLBACK_TITLE
        thumbnail = None
        try:
            details = await self.twitch.get_stream_details(event.broadcaster_user_id)
            if details is not None:
                title = details.title or FALLBACK_TITLE
                thumbnail = details.thumbnail_url
        except UpstreamError as e:
            logger.warning(f"Stream details lookup failed for {event.broadcaster_user_id}: {e}")

        stream = await self.streams.create_stream(
            owner.owner_id,
            event.stream_id,
            event.broadcaster_user_id,
            event.started_at,
            title=title,
            thumbnail_url=thumbnail,
        )
        if stream is None:
            # Redelivery: the stream row may have committed without its draft
            stream = await self.streams.get_by_platform_stream_id(event.stream_id)
            if stream is None:
                logger.warning(f"Stream {event.stream_id} conflicted but could not be loaded")
                return None
            title = stream.title or title
            thumbnail = stream.thumbnail_url or thumbnail
            logger.info(f"Duplicate stream.online for stream {event.stream_id}, ensuring draft")

        login = event.broadcaster_user_login or owner.broadcaster_login
        return await self.controller.create_draft(
            stream, title, f"https://twitch.tv/{login}", thumbnail
        )

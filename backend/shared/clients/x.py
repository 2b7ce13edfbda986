"""Primary social channel: posts to the X v2 API on behalf of an owner."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import httpx

from .base import SendResult

logger = logging.getLogger(__name__)

X_API_BASE = "https://api.x.com/2"

# Images are only fetched from the Twitch CDN
ALLOWED_MEDIA_HOSTS = ("static-cdn.jtvnw.net",)

TokenLookup = Callable[[str], Awaitable[str | None]]


class XPostSender:
    """Post Sender over httpx.

    ``token_lookup(owner_id)`` returns the owner's bearer token; token
    storage and refresh belong to the identity layer.
    """

    def __init__(
        self,
        token_lookup: TokenLookup,
        *,
        api_base: str = X_API_BASE,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._token_lookup = token_lookup
        self.api_base = api_base.rstrip("/")
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._http.aclose()

    async def upload_media(self, owner_id: str, image_url: str) -> str | None:
        """Fetch *image_url* and upload it. Returns the media id or None."""
        host = httpx.URL(image_url).host
        if host not in ALLOWED_MEDIA_HOSTS:
            logger.warning(f"Refusing media from non-CDN host: {host}")
            return None

        token = await self._token_lookup(owner_id)
        if not token:
            return None

        try:
            image = await self._http.get(image_url)
            if image.status_code != 200:
                logger.warning(f"Media fetch failed ({image.status_code}) for owner {owner_id}")
                return None

            response = await self._http.post(
                f"{self.api_base}/media/upload",
                headers={"Authorization": f"Bearer {token}"},
                files={"media": ("thumbnail.jpg", image.content, "image/jpeg")},
                data={"media_category": "tweet_image"},
            )
            if response.status_code not in (200, 201):
                logger.warning(f"Media upload rejected ({response.status_code}) for owner {owner_id}")
                return None

            data = response.json().get("data", {})
            return data.get("id") or None
        except httpx.HTTPError as e:
            logger.warning(f"Media upload error for owner {owner_id}: {type(e).__name__}")
            return None

    async def send(
        self, owner_id: str, body: str, media_ids: list[str] | None = None
    ) -> SendResult:
        token = await self._token_lookup(owner_id)
        if not token:
            return SendResult(success=False, error="X account not connected")

        payload: dict = {"text": body}
        if media_ids:
            payload["media"] = {"media_ids": media_ids}

        try:
            response = await self._http.post(
                f"{self.api_base}/tweets",
                headers={"Authorization": f"Bearer {token}"},
                json=payload,
            )
        except httpx.TimeoutException:
            return SendResult(success=False, error="X API timed out")
        except httpx.HTTPError as e:
            return SendResult(success=False, error=f"X API request failed: {type(e).__name__}")

        if response.status_code not in (200, 201):
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = None
            return SendResult(
                success=False, error=detail or f"Failed to post ({response.status_code})"
            )

        post_id = response.json().get("data", {}).get("id")
        return SendResult(success=True, external_post_id=post_id)

"""Fallback channel: Discord incoming webhook."""

from __future__ import annotations

import logging

import httpx

from .base import SendResult

logger = logging.getLogger(__name__)

# Twitch purple
EMBED_COLOR = 0x9146FF


class DiscordWebhookChannel:
    """Sends an announcement embed to an owner-configured Discord webhook."""

    def __init__(
        self, *, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None
    ):
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._http.aclose()

    async def send(
        self,
        webhook_url: str,
        message: str,
        *,
        title: str | None = None,
        url: str | None = None,
        image_url: str | None = None,
    ) -> SendResult:
        embed: dict = {"description": message, "color": EMBED_COLOR}
        if title:
            embed["title"] = title
        if url:
            embed["url"] = url
        if image_url:
            embed["image"] = {"url": image_url}

        try:
            # wait=true makes Discord return the created message
            response = await self._http.post(
                webhook_url, params={"wait": "true"}, json={"embeds": [embed]}
            )
        except httpx.HTTPError as e:
            logger.warning(f"Discord webhook request failed: {type(e).__name__}")
            return SendResult(success=False, error=f"Discord webhook failed: {type(e).__name__}")

        if response.status_code not in (200, 204):
            return SendResult(
                success=False, error=f"Discord webhook returned {response.status_code}"
            )

        message_id = None
        if response.status_code == 200:
            message_id = response.json().get("id")
        return SendResult(success=True, external_post_id=message_id)

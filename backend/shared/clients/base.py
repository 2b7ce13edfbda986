"""Collaborator contracts consumed by the engine services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class SendResult:
    """Outcome of a post attempt. Errors are opaque strings, never retried here."""

    success: bool
    external_post_id: str | None = None
    error: str | None = None


class PostSender(Protocol):
    async def upload_media(self, owner_id: str, image_url: str) -> str | None: ...

    async def send(
        self, owner_id: str, body: str, media_ids: list[str] | None = None
    ) -> SendResult: ...


class WebhookChannel(Protocol):
    async def send(
        self,
        webhook_url: str,
        message: str,
        *,
        title: str | None = None,
        url: str | None = None,
        image_url: str | None = None,
    ) -> SendResult: ...


class ViewerCountSource(Protocol):
    async def get_live_viewer_count(
        self, broadcaster_id: str, platform_stream_id: str | None = None
    ) -> int | None: ...

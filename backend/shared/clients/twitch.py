"""Twitch Helix client (app access token only).

Only public endpoints are used: the engine needs live viewer counts for
sampling and title/thumbnail for a freshly started stream.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import httpx

from shared.errors import UpstreamError

logger = logging.getLogger(__name__)

HELIX_BASE = "https://api.twitch.tv/helix"
OAUTH_BASE = "https://id.twitch.tv/oauth2"


@dataclass
class StreamDetails:
    """Subset of a Helix ``streams`` entry."""

    platform_stream_id: str
    title: str
    viewer_count: int
    thumbnail_url: str | None = None
    game_name: str | None = None


class TwitchHelixClient:
    """Client for the Twitch Helix API.

    Manages a shared httpx client for connection reuse and caches
    the app access token to avoid redundant token requests. Timeouts,
    transport errors and 5xx responses raise ``UpstreamError``.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not client_id or not client_secret:
            raise ValueError("Twitch client_id and client_secret are required")

        self.client_id = client_id
        self.client_secret = client_secret
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

        self._app_token: str | None = None
        self._app_token_expires_at: float = 0.0
        self._app_token_lock = asyncio.Lock()

    async def close(self) -> None:
        """Close the shared HTTP client. Call on shutdown."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _app_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Client-Id": self.client_id}

    async def _ensure_app_token(self) -> str:
        """Return a cached app access token, refreshing only when expired."""
        now = time.monotonic()
        if self._app_token and now < self._app_token_expires_at:
            return self._app_token

        async with self._app_token_lock:
            now = time.monotonic()
            if self._app_token and now < self._app_token_expires_at:
                return self._app_token

            try:
                response = await self._http.post(
                    f"{OAUTH_BASE}/token",
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "grant_type": "client_credentials",
                    },
                )
            except httpx.HTTPError as e:
                raise UpstreamError(f"Twitch token request failed: {type(e).__name__}") from e

            if response.status_code != 200:
                logger.error(f"Failed to get app token: {response.status_code}")
                raise UpstreamError(f"Twitch token request returned {response.status_code}")

            data = response.json()
            self._app_token = data.get("access_token")
            # Twitch returns expires_in in seconds; refresh 5 min early
            expires_in = data.get("expires_in", 0)
            self._app_token_expires_at = now + max(expires_in - 300, 0)
            return self._app_token  # type: ignore[return-value]

    async def _helix_get(self, path: str, params: dict | None = None) -> dict:
        token = await self._ensure_app_token()
        try:
            response = await self._http.get(
                f"{HELIX_BASE}/{path}", params=params, headers=self._app_headers(token)
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Helix GET /{path} failed: {type(e).__name__}") from e

        if response.status_code == 401:
            # Token revoked early; drop it so the next call fetches a new one
            self._app_token = None
            raise UpstreamError(f"Helix GET /{path} unauthorized")
        if response.status_code >= 500 or response.status_code == 429:
            raise UpstreamError(f"Helix GET /{path} returned {response.status_code}")
        if response.status_code != 200:
            raise UpstreamError(f"Helix GET /{path} rejected: {response.status_code}")
        return response.json()

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def get_stream_details(self, broadcaster_id: str) -> StreamDetails | None:
        """Current live stream of *broadcaster_id*, or None when offline."""
        data = await self._helix_get("streams", {"user_id": broadcaster_id})
        streams = data.get("data", [])
        if not streams:
            return None
        s = streams[0]
        thumbnail = s.get("thumbnail_url")
        if thumbnail:
            thumbnail = thumbnail.replace("{width}", "1280").replace("{height}", "720")
        return StreamDetails(
            platform_stream_id=str(s.get("id", "")),
            title=s.get("title") or "",
            viewer_count=int(s.get("viewer_count", 0)),
            thumbnail_url=thumbnail,
            game_name=s.get("game_name"),
        )

    async def get_live_viewer_count(
        self, broadcaster_id: str, platform_stream_id: str | None = None
    ) -> int | None:
        """Viewer count of the live session, or None when it is no longer live.

        When *platform_stream_id* is given, a different live session of the
        same broadcaster counts as "not live" for the tracked stream.
        """
        details = await self.get_stream_details(broadcaster_id)
        if details is None:
            return None
        if platform_stream_id and details.platform_stream_id != platform_stream_id:
            return None
        return details.viewer_count

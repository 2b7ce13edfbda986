"""Link Redirector: tracked short links, crawler previews and click capture."""

from __future__ import annotations

import asyncio
import html
import logging
import re
import secrets
import string
from dataclasses import dataclass
from urllib.parse import urlsplit

from shared.errors import LinkNotFoundError, RedirectTargetDeniedError, ShortCodeExhaustedError
from shared.models.link import Link
from shared.models.stream import Stream
from shared.repositories.link import LinkRepository
from shared.repositories.stream import StreamRepository

logger = logging.getLogger(__name__)

SHORT_CODE_ALPHABET = string.ascii_letters + string.digits
SHORT_CODE_LENGTH = 8
MAX_SHORT_CODE_ATTEMPTS = 5

# Stored header-derived fields are capped to this many characters
MAX_HEADER_LENGTH = 512

PREVIEW_REFRESH_SECONDS = 1

_CRAWLER_RE = re.compile(
    r"twitterbot|facebookexternalhit|facebot|discordbot|slackbot|slack-imgproxy|"
    r"linkedinbot|telegrambot|whatsapp|embedly|pinterest|redditbot|skypeuripreview|"
    r"vkshare|applebot|iframely|mastodon|bluesky|line-poker|kakaotalk-scrap",
    re.IGNORECASE,
)


def generate_short_code(length: int = SHORT_CODE_LENGTH) -> str:
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


def is_crawler(user_agent: str | None) -> bool:
    """Best-effort classifier for link-preview bots."""
    return bool(user_agent) and _CRAWLER_RE.search(user_agent) is not None


def truncate(value: str | None, limit: int = MAX_HEADER_LENGTH) -> str | None:
    if value is None:
        return None
    return value[:limit]


def is_allowed_target(url: str, allowed_domains: list[str], app_origin: str | None) -> bool:
    """True if *url* is http(s) on an allowed domain (or a subdomain) or same-origin."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    if parts.username or parts.password:
        return False

    host = parts.hostname.lower()
    for domain in allowed_domains:
        domain = domain.lower().lstrip(".")
        if host == domain or host.endswith("." + domain):
            return True

    if app_origin:
        origin = urlsplit(app_origin)
        if (parts.scheme, parts.netloc.lower()) == (origin.scheme, origin.netloc.lower()):
            return True
    return False


def render_preview_html(link: Link, stream: Stream, canonical_url: str) -> str:
    """OGP / Twitter card document that forwards humans after a short delay."""
    title = html.escape(stream.title or "Live now on Twitch")
    description = html.escape(f"{stream.title or 'Live now'} | Watch live on Twitch")
    target = html.escape(link.target_url, quote=True)
    canonical = html.escape(canonical_url, quote=True)
    image_tags = ""
    if stream.thumbnail_url:
        image = html.escape(stream.thumbnail_url, quote=True)
        image_tags = (
            f'<meta property="og:image" content="{image}">\n'
            f'<meta name="twitter:image" content="{image}">\n'
        )
    card = "summary_large_image" if stream.thumbnail_url else "summary"

    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n<head>\n<meta charset="utf-8">\n'
        f"<title>{title}</title>\n"
        f'<meta property="og:type" content="website">\n'
        f'<meta property="og:title" content="{title}">\n'
        f'<meta property="og:description" content="{description}">\n'
        f'<meta property="og:url" content="{canonical}">\n'
        f'<meta name="twitter:card" content="{card}">\n'
        f'<meta name="twitter:title" content="{title}">\n'
        f'<meta name="twitter:description" content="{description}">\n'
        f"{image_tags}"
        f'<link rel="canonical" href="{canonical}">\n'
        f'<meta http-equiv="refresh" content="{PREVIEW_REFRESH_SECONDS};url={target}">\n'
        "</head>\n<body>\n"
        f'<p><a href="{target}">{title}</a></p>\n'
        "</body>\n</html>\n"
    )


@dataclass
class RedirectDecision:
    kind: str  # 'redirect' | 'preview'
    link: Link
    location: str
    html: str | None = None

    @property
    def is_preview(self) -> bool:
        return self.kind == "preview"


class ClickRecorder:
    """Fire-and-forget click writes, decoupled from the redirect response.

    Each write runs as its own task; failures are logged and dropped.
    """

    def __init__(self, repo: LinkRepository) -> None:
        self.repo = repo
        self._tasks: set[asyncio.Task] = set()

    def record(self, link_id: int, user_agent: str | None, referrer: str | None) -> None:
        task = asyncio.create_task(
            self._write(link_id, truncate(user_agent), truncate(referrer)),
            name=f"click-{link_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write(self, link_id: int, user_agent: str | None, referrer: str | None) -> None:
        try:
            await self.repo.insert_click(link_id, user_agent, referrer)
        except Exception as e:
            logger.warning(f"Failed to record click for link {link_id}: {type(e).__name__}: {e}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight writes (shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class LinkService:
    """Creates short links and decides how a short code is answered."""

    def __init__(
        self,
        links: LinkRepository,
        streams: StreamRepository,
        clicks: ClickRecorder,
        *,
        app_origin: str,
        allowed_domains: list[str],
    ) -> None:
        self.links = links
        self.streams = streams
        self.clicks = clicks
        self.app_origin = app_origin.rstrip("/")
        self.allowed_domains = allowed_domains

    def short_url(self, short_code: str) -> str:
        return f"{self.app_origin}/l/{short_code}"

    def check_target(self, url: str) -> None:
        if not is_allowed_target(url, self.allowed_domains, self.app_origin):
            raise RedirectTargetDeniedError(url)

    async def create_short_link(
        self,
        owner_id: str,
        target_url: str,
        *,
        campaign_id: str | None = None,
        stream_id: int | None = None,
        has_media: bool = False,
    ) -> Link:
        self.check_target(target_url)
        for _ in range(MAX_SHORT_CODE_ATTEMPTS):
            code = generate_short_code()
            link = await self.links.insert_link(
                owner_id,
                code,
                target_url,
                campaign_id=campaign_id,
                stream_id=stream_id,
                has_media=has_media,
            )
            if link is not None:
                return link
            logger.debug(f"Short code collision on {code}, retrying")
        logger.error(f"Short code space exhausted after {MAX_SHORT_CODE_ATTEMPTS} attempts")
        raise ShortCodeExhaustedError(MAX_SHORT_CODE_ATTEMPTS)

    async def resolve(
        self, short_code: str, user_agent: str | None, referrer: str | None
    ) -> RedirectDecision:
        link = await self.links.get_by_short_code(short_code)
        if link is None:
            raise LinkNotFoundError(f"Short link {short_code} not found")

        # Applies to both branches below
        self.check_target(link.target_url)

        if is_crawler(user_agent) and link.stream_id is not None and not link.has_media:
            stream = await self.streams.get_stream(link.stream_id)
            if stream is not None:
                return RedirectDecision(
                    kind="preview",
                    link=link,
                    location=link.target_url,
                    html=render_preview_html(link, stream, self.short_url(link.short_code)),
                )

        self.clicks.record(link.id, user_agent, referrer)
        return RedirectDecision(kind="redirect", link=link, location=link.target_url)

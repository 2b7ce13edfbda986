"""Data models for links and clicks tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Link:
    """Immutable short-code to target-URL mapping."""

    id: int
    owner_id: str
    short_code: str
    target_url: str
    campaign_id: str | None = None
    stream_id: int | None = None
    has_media: bool = False
    created_at: datetime | None = None


@dataclass
class Click:
    """One redirect traversal. Append-only."""

    id: int
    link_id: int
    at: datetime
    user_agent: str | None = None
    referrer: str | None = None

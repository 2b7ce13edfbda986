"""Data models for streams and viewer samples."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Stream:
    """One broadcast session, created from a "went live" event."""

    id: int
    owner_id: str
    platform_stream_id: str
    broadcaster_id: str
    started_at: datetime
    platform: str = "twitch"
    title: str | None = None
    thumbnail_url: str | None = None
    ended_at: datetime | None = None
    peak_viewer_count: int | None = None
    created_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return self.ended_at is None


@dataclass
class Sample:
    """One viewer-count reading. Append-only."""

    id: int
    stream_id: int
    taken_at: datetime
    viewer_count: int

"""Data model for drafts table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

DRAFT_PENDING = "pending"
DRAFT_POSTED = "posted"
DRAFT_SKIPPED = "skipped"


@dataclass
class Draft:
    """A pending announcement awaiting a post/skip decision."""

    id: str
    stream_id: int
    owner_id: str
    title: str
    target_url: str
    image_url: str | None = None
    status: str = DRAFT_PENDING  # 'pending' | 'posted' | 'skipped'
    grace_seconds: int = 90
    timeout_action: str = "post"  # 'post' | 'skip'
    resolved_by: str | None = None  # 'user' | 'timer' | 'sweep'
    resolved_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == DRAFT_PENDING

"""Data model for deliveries table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

CHANNEL_PRIMARY = "primary-social"
CHANNEL_FALLBACK = "fallback-webhook"

DELIVERY_QUEUED = "queued"
DELIVERY_SENT = "sent"
DELIVERY_FAILED = "failed"
DELIVERY_SKIPPED = "skipped"


@dataclass
class Delivery:
    """One externally-visible post attempt (or the record of a skip)."""

    id: int
    owner_id: str
    idempotency_key: str
    channel: str  # 'primary-social' | 'fallback-webhook'
    status: str  # 'queued' | 'sent' | 'failed' | 'skipped'
    body_text: str = ""
    draft_id: str | None = None
    stream_id: int | None = None
    link_id: int | None = None
    template_id: str | None = None
    external_post_id: str | None = None
    error: str | None = None
    latency_ms: int | None = None
    created_at: datetime | None = None

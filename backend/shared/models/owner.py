"""Data model for owner_settings table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class OwnerSettings:
    """Per-tenant announcement settings and broadcaster mapping."""

    owner_id: str
    broadcaster_id: str
    broadcaster_login: str
    grace_seconds: int = 90
    timeout_action: str = "post"  # 'post' | 'skip'
    default_template: str | None = None
    fallback_webhook_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

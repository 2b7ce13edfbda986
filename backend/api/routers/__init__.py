"""API Routers package

This package contains all API route handlers.
Routers are organized by feature domain.
"""

from . import (
    admin_router,
    cron_router,
    drafts_router,
    links_router,
    quota_router,
    reports_router,
    settings_router,
    streams_router,
    webhooks_router,
)

__all__ = [
    "admin_router",
    "cron_router",
    "drafts_router",
    "links_router",
    "quota_router",
    "reports_router",
    "settings_router",
    "streams_router",
    "webhooks_router",
]

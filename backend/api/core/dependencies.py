"""Dependency injection utilities for FastAPI"""

import hmac
import logging
from datetime import timedelta

import asyncpg
from fastapi import Cookie, Depends, Header, HTTPException

from api.core.config import get_settings
from api.core.database import get_database_manager
from api.services import AuthService
from shared.clients import DiscordWebhookChannel, TwitchHelixClient, XPostSender
from shared.repositories import (
    DeliveryRepository,
    DraftRepository,
    LinkRepository,
    OwnerRepository,
    QuotaRepository,
    SamplingMetricsRepository,
    StreamRepository,
)
from shared.services import (
    CapacityService,
    ClickRecorder,
    DraftLifecycleController,
    LinkService,
    PgNotifyGraceTimers,
    QuotaManager,
    ReportService,
    SamplingService,
    StreamOnlineHandler,
)

logger = logging.getLogger(__name__)


# ============================================
# Shared clients (one per process)
# ============================================


_twitch_client: TwitchHelixClient | None = None
_x_sender: XPostSender | None = None
_webhook_channel: DiscordWebhookChannel | None = None
_click_recorder: ClickRecorder | None = None


def get_twitch_client() -> TwitchHelixClient:
    """Get shared TwitchHelixClient singleton (connection reuse + token cache)."""
    global _twitch_client
    if _twitch_client is None:
        settings = get_settings()
        _twitch_client = TwitchHelixClient(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            timeout=settings.http_timeout,
        )
    return _twitch_client


async def _lookup_x_token(owner_id: str) -> str | None:
    return await OwnerRepository(get_database_manager().pool).get_x_token(owner_id)


def get_x_sender() -> XPostSender:
    global _x_sender
    if _x_sender is None:
        settings = get_settings()
        _x_sender = XPostSender(
            _lookup_x_token, api_base=settings.x_api_base, timeout=settings.http_timeout
        )
    return _x_sender


def get_webhook_channel() -> DiscordWebhookChannel:
    global _webhook_channel
    if _webhook_channel is None:
        _webhook_channel = DiscordWebhookChannel(timeout=get_settings().http_timeout)
    return _webhook_channel


async def close_clients() -> None:
    """Drain click writes and close HTTP clients. Call on app shutdown."""
    global _twitch_client, _x_sender, _webhook_channel, _click_recorder
    if _click_recorder is not None:
        await _click_recorder.drain()
        _click_recorder = None
    for client in (_twitch_client, _x_sender, _webhook_channel):
        if client is not None:
            await client.close()
    _twitch_client = _x_sender = _webhook_channel = None


def get_auth_service() -> AuthService:
    """Get AuthService instance (dependency injection)"""
    settings = get_settings()
    return AuthService(
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        expire_days=settings.jwt_expire_days,
    )


def get_db_pool() -> asyncpg.Pool:
    try:
        db_manager = get_database_manager()
    except RuntimeError:
        raise HTTPException(status_code=503, detail="Database not ready") from None
    if not db_manager.is_connected:
        raise HTTPException(status_code=503, detail="Database not ready")
    return db_manager.pool


# ============================================
# Service Dependencies
# ============================================


def get_owner_repository(pool: asyncpg.Pool = Depends(get_db_pool)) -> OwnerRepository:
    return OwnerRepository(pool)


def get_stream_repository(pool: asyncpg.Pool = Depends(get_db_pool)) -> StreamRepository:
    return StreamRepository(pool)


def get_quota_manager(pool: asyncpg.Pool = Depends(get_db_pool)) -> QuotaManager:
    settings = get_settings()
    return QuotaManager(
        QuotaRepository(pool),
        owner_limit=settings.quota_owner_limit,
        global_limit=settings.quota_global_limit,
    )


def get_click_recorder(pool: asyncpg.Pool = Depends(get_db_pool)) -> ClickRecorder:
    # Process-wide so in-flight click tasks stay referenced
    global _click_recorder
    if _click_recorder is None:
        _click_recorder = ClickRecorder(LinkRepository(pool))
    return _click_recorder


def get_link_service(
    pool: asyncpg.Pool = Depends(get_db_pool),
    clicks: ClickRecorder = Depends(get_click_recorder),
) -> LinkService:
    settings = get_settings()
    return LinkService(
        LinkRepository(pool),
        StreamRepository(pool),
        clicks,
        app_origin=settings.app_origin,
        allowed_domains=settings.allowed_redirect_domains,
    )


def get_draft_controller(
    pool: asyncpg.Pool = Depends(get_db_pool),
    quota: QuotaManager = Depends(get_quota_manager),
    links: LinkService = Depends(get_link_service),
) -> DraftLifecycleController:
    settings = get_settings()
    return DraftLifecycleController(
        DraftRepository(pool),
        DeliveryRepository(pool),
        OwnerRepository(pool),
        quota,
        links,
        get_x_sender(),
        get_webhook_channel(),
        PgNotifyGraceTimers(pool),
        default_grace_seconds=settings.default_grace_seconds,
        default_timeout_action=settings.default_timeout_action,
    )


def get_sampling_service(pool: asyncpg.Pool = Depends(get_db_pool)) -> SamplingService:
    return SamplingService(
        StreamRepository(pool),
        SamplingMetricsRepository(pool),
        get_twitch_client(),
        stale_after=timedelta(seconds=get_settings().stale_stream_after_seconds),
    )


def get_report_service(
    pool: asyncpg.Pool = Depends(get_db_pool),
    sampling: SamplingService = Depends(get_sampling_service),
) -> ReportService:
    return ReportService(DeliveryRepository(pool), sampling)


def get_capacity_service(pool: asyncpg.Pool = Depends(get_db_pool)) -> CapacityService:
    return CapacityService(
        SamplingMetricsRepository(pool),
        StreamRepository(pool),
        DeliveryRepository(pool),
        QuotaRepository(pool),
    )


def get_stream_online_handler(
    pool: asyncpg.Pool = Depends(get_db_pool),
    controller: DraftLifecycleController = Depends(get_draft_controller),
) -> StreamOnlineHandler:
    return StreamOnlineHandler(
        OwnerRepository(pool), StreamRepository(pool), controller, get_twitch_client()
    )


# ============================================
# Authentication Dependencies
# ============================================


def _get_token_payload(auth_token: str | None = Cookie(None)) -> dict:
    """Verify JWT and return full payload"""
    auth_service = get_auth_service()

    if not auth_token:
        logger.warning("No auth token provided")
        raise HTTPException(status_code=401, detail="Not logged in")

    payload = auth_service.verify_token(auth_token)

    if not payload:
        logger.warning("Invalid or expired token")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


async def get_current_owner_id(
    auth_token: str | None = Cookie(None),
) -> str:
    """Return the owner id every owner-scoped query filters on"""
    payload = _get_token_payload(auth_token)
    return str(payload["sub"])


async def require_admin(owner_id: str = Depends(get_current_owner_id)) -> str:
    if owner_id not in get_settings().admin_ids:
        logger.warning(f"Owner {owner_id} denied operator endpoint")
        raise HTTPException(status_code=403, detail="Admin access required")
    return owner_id


async def require_cron_secret(authorization: str | None = Header(None)) -> None:
    """Bearer check for scheduler-driven endpoints"""
    secret = get_settings().cron_secret
    if not secret:
        logger.error("CRON_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")

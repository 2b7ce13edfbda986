"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from api.core.config import Settings, get_settings
from api.core.database import get_database_manager, init_database_manager
from api.core.dependencies import close_clients
from api.core.logging import setup_logging
from api.routers import (
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
from shared.database import DatabaseManager
from shared.repositories import QuotaRepository
from shared.services import QuotaManager

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

ROUTERS = (
    webhooks_router,
    drafts_router,
    links_router,
    quota_router,
    streams_router,
    reports_router,
    settings_router,
    admin_router,
    cron_router,
)

_start_time: float = 0.0


def _uptime() -> int:
    return int(time.time() - _start_time)


async def _uptime_log(db_manager: DatabaseManager, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        db_ok = await db_manager.check_health()
        logger.info(f"Heartbeat: uptime={_uptime()}s, db={db_ok}")


async def _apply_quota_ceiling(db_manager: DatabaseManager, settings: Settings) -> None:
    """Push the configured platform-wide ceiling into the global counter row."""
    quota = QuotaManager(
        QuotaRepository(db_manager.pool),
        owner_limit=settings.quota_owner_limit,
        global_limit=settings.quota_global_limit,
    )
    try:
        await quota.sync_global_limit()
    except Exception as e:
        logger.warning(f"Failed to apply global quota limit: {type(e).__name__}: {e}")


async def _connect_in_background(db_manager: DatabaseManager, settings: Settings) -> None:
    """Keep reconnecting after a failed startup, doubling the delay up to 60s."""
    delay = 5
    while not db_manager.is_connected:
        await asyncio.sleep(delay)
        try:
            await db_manager.connect()
        except Exception as e:
            delay = min(delay * 2, 60)
            logger.warning(
                f"DB background connect failed: {type(e).__name__}: {e}, "
                f"next attempt in {delay}s"
            )
            continue
        logger.info("Database connected (background retry)")
        await _apply_quota_ceiling(db_manager, settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Connect the pool and start background loops; tear both down on exit."""
    global _start_time
    _start_time = time.time()
    settings = get_settings()

    logger.info(f"Starting CastCue API ({settings.environment}, origin={settings.app_origin})")

    db_manager = init_database_manager(settings.database_url, settings.database_ssl)
    tasks: list[asyncio.Task] = []

    # Serve requests after 30s even without a pool; routes answer 503 until it lands
    try:
        await asyncio.wait_for(db_manager.connect(), timeout=30)
        logger.info("Database connected")
        await _apply_quota_ceiling(db_manager, settings)
    except Exception as e:
        logger.error(f"DB unavailable at startup ({type(e).__name__}: {e}), retrying in background")
        tasks.append(asyncio.create_task(_connect_in_background(db_manager, settings)))

    tasks.append(asyncio.create_task(db_manager.keepalive()))
    if settings.enable_keep_alive:
        tasks.append(asyncio.create_task(_uptime_log(db_manager, settings.keep_alive_interval)))

    yield

    logger.info("Shutting down CastCue API")
    for task in tasks:
        task.cancel()
    try:
        await close_clients()
        await db_manager.disconnect()
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    settings = get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="CastCue API",
        description="Stream announcement lifecycle and engagement measurement",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for module in ROUTERS:
        app.include_router(module.router)

    @app.get("/")
    async def root():
        return {"service": "castcue-api", "status": "running"}

    @app.get("/health")
    async def health():
        """Liveness: never touches the database"""
        return {"status": "healthy", "uptime_seconds": _uptime()}

    @app.get("/status")
    async def status():
        """Readiness, including a live pool check"""
        try:
            db_ok = await get_database_manager().check_health()
        except RuntimeError:
            db_ok = False
        return {
            "service": "castcue-api",
            "version": VERSION,
            "uptime_seconds": _uptime(),
            "db_connected": db_ok,
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        return "pong"

    logger.info("FastAPI application configured")
    return app

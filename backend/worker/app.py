"""Worker process: owns the pool, the engine services and the components."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import asyncpg

from shared.clients import DiscordWebhookChannel, TwitchHelixClient, XPostSender
from shared.database import DatabaseManager, PoolConfig
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
    ClickRecorder,
    DraftLifecycleController,
    GraceTimerScheduler,
    LinkService,
    QuotaManager,
    SamplingService,
)
from worker.components import COMPONENTS
from worker.core import Component, HealthCheckServer
from worker.core.config import WorkerSettings

LOGGER = logging.getLogger("Worker")


class Worker:
    def __init__(self, settings: WorkerSettings) -> None:
        self.settings = settings
        self.db = DatabaseManager(
            settings.database_url, PoolConfig.for_service("worker", ssl=settings.database_ssl)
        )
        self.health = HealthCheckServer(self, host=settings.health_host, port=settings.health_port)
        self.components: list[Component] = []
        self.ready = False
        self._keepalive_task: asyncio.Task | None = None

    @property
    def pool(self) -> asyncpg.Pool:
        return self.db.pool

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _build_services(self) -> None:
        pool = self.pool
        s = self.settings

        self.twitch = TwitchHelixClient(s.client_id, s.client_secret, timeout=s.http_timeout)
        self.owners = OwnerRepository(pool)
        self.sender = XPostSender(
            self.owners.get_x_token, api_base=s.x_api_base, timeout=s.http_timeout
        )
        self.fallback = DiscordWebhookChannel(timeout=s.http_timeout)

        self.streams = StreamRepository(pool)
        self.drafts = DraftRepository(pool)
        links = LinkRepository(pool)

        self.quota = QuotaManager(
            QuotaRepository(pool), owner_limit=s.quota_owner_limit, global_limit=s.quota_global_limit
        )
        self.links = LinkService(
            links,
            self.streams,
            ClickRecorder(links),
            app_origin=s.app_origin,
            allowed_domains=s.allowed_redirect_domains,
        )
        self.timers = GraceTimerScheduler(self._on_grace_expired)
        self.controller = DraftLifecycleController(
            self.drafts,
            DeliveryRepository(pool),
            self.owners,
            self.quota,
            self.links,
            self.sender,
            self.fallback,
            self.timers,
            default_grace_seconds=s.default_grace_seconds,
            default_timeout_action=s.default_timeout_action,
        )
        self.sampling = SamplingService(
            self.streams,
            SamplingMetricsRepository(pool),
            self.twitch,
            stale_after=timedelta(seconds=s.stale_stream_after_seconds),
            concurrency=s.sampling_concurrency,
        )

    async def _on_grace_expired(self, draft_id: str) -> None:
        await self.controller.resolve_timeout(draft_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.health.start()
        await self.db.connect()
        self._build_services()

        try:
            await self.quota.sync_global_limit()
        except Exception as e:
            LOGGER.warning(f"Failed to apply global quota limit: {e}")

        for component_cls in COMPONENTS:
            component = component_cls(self)
            try:
                await component.component_load()
                self.components.append(component)
            except Exception as e:
                LOGGER.exception(f"Failed to load component {component_cls.__name__}: {e}")

        self._keepalive_task = asyncio.create_task(self.db.keepalive())
        self.ready = True
        LOGGER.info(f"Worker ready ({len(self.components)} component(s) loaded)")

    async def stop(self) -> None:
        self.ready = False
        if self._keepalive_task:
            self._keepalive_task.cancel()
        for component in reversed(self.components):
            try:
                await component.component_unload()
            except Exception as e:
                LOGGER.exception(f"Error unloading {component.name}: {e}")
        self.components.clear()

        if hasattr(self, "links"):
            await self.links.clicks.drain()
            for client in (self.twitch, self.sender, self.fallback):
                await client.close()
        await self.db.disconnect()
        await self.health.stop()
        LOGGER.info("Worker stopped")

    def status(self) -> dict:
        merged: dict = {"components": [c.name for c in self.components]}
        for component in self.components:
            merged.update(component.status())
        return merged

"""HTTP health check server"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING

from aiohttp import web

if TYPE_CHECKING:
    from worker.app import Worker

logger = logging.getLogger("Worker.Health")


class HealthCheckServer:
    """HTTP health check server"""

    def __init__(self, worker: Worker | None = None, host: str = "0.0.0.0", port: int | None = None):
        self.worker = worker
        self.host = host
        # A platform-assigned PORT wins over the configured port
        self.port = int(os.getenv("PORT", "0")) or port or 4344
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._heartbeat_task: asyncio.Task | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes"""
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/status", self.handle_status)
        self.app.router.add_get("/ping", self.handle_ping)

    def _ready(self) -> bool:
        return self.worker is not None and self.worker.ready

    async def handle_root(self, request: web.Request) -> web.Response:
        """Root endpoint - minimal service info"""
        return web.json_response({"service": "castcue-worker", "status": "running"})

    async def handle_health(self, request: web.Request) -> web.Response:
        """Liveness check: always 200"""
        ready = self._ready()
        return web.json_response({"status": "healthy" if ready else "starting", "ready": ready})

    async def handle_status(self, request: web.Request) -> web.Response:
        """Status endpoint with component details"""
        body: dict = {
            "service": "castcue-worker",
            "uptime_seconds": int(time.time() - self._start_time),
            "ready": self._ready(),
        }
        if self.worker is not None:
            body.update(self.worker.status())
        return web.json_response(body)

    async def handle_ping(self, request: web.Request) -> web.Response:
        """Ping endpoint"""
        return web.Response(text="pong")

    async def _heartbeat(self) -> None:
        """Periodic heartbeat: log uptime and worker status"""
        while True:
            await asyncio.sleep(300)
            uptime = int(time.time() - self._start_time)
            status = self.worker.status() if self.worker else {}
            logger.info(f"Heartbeat: uptime={uptime}s, ready={self._ready()}, {status}")

    async def start(self) -> None:
        """Start health check server"""
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            site = web.TCPSite(self.runner, self.host, self.port)
            await site.start()

            self._heartbeat_task = asyncio.create_task(self._heartbeat())

            logger.info(f"Health server started on {self.host}:{self.port}")
            logger.info(f"  GET http://{self.host}:{self.port}/health - Health check")
            logger.info(f"  GET http://{self.host}:{self.port}/status - Detailed status")

        except Exception as e:
            logger.exception(f"Failed to start health server: {e}")
            raise

    async def stop(self) -> None:
        """Stop health check server"""
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
        if self.runner:
            try:
                await self.runner.cleanup()
                logger.info("Health server stopped")
            except Exception as e:
                logger.exception(f"Error stopping health server: {e}")

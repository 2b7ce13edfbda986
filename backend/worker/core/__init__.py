"""Core modules for the background worker."""

from .component import Component, run_every
from .config import get_settings
from .health_server import HealthCheckServer
from .logging import setup_logging
from .pg_listener import pg_listen

__all__ = [
    "Component",
    "HealthCheckServer",
    "get_settings",
    "pg_listen",
    "run_every",
    "setup_logging",
]

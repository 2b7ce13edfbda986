"""Base class for worker components."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from worker.app import Worker


class Component:
    """A unit of background work owned by the worker.

    Subclasses start their loops in ``component_load`` through
    ``spawn`` so ``component_unload`` can cancel them.
    """

    name: str = "Component"

    def __init__(self, worker: Worker) -> None:
        self.worker = worker
        self.logger = logging.getLogger(self.name)
        self._tasks: list[asyncio.Task] = []

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{self.name}.{name}")
        self._tasks.append(task)
        return task

    async def component_load(self) -> None:
        raise NotImplementedError

    async def component_unload(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def status(self) -> dict:
        return {}


async def run_every(
    logger: logging.Logger,
    interval: float,
    job,
    *,
    label: str,
    initial_delay: float = 0.0,
) -> None:
    """Call ``job()`` every *interval* seconds; a failing run never stops the loop."""
    if initial_delay:
        await asyncio.sleep(initial_delay)
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"{label} failed: {e}")
        await asyncio.sleep(interval)

"""LISTEN on a Postgres NOTIFY channel from a pooled connection, reconnecting on loss."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import asyncpg

LOGGER = logging.getLogger("PgListener")

NotifyHandler = Callable[[asyncpg.Connection, int, str, str], Coroutine[Any, Any, None]]


async def _drop(pool: asyncpg.Pool, connection: asyncpg.Connection, channel: str, handler) -> None:
    """Detach the listener and hand the connection back, terminating it if release fails."""
    with contextlib.suppress(Exception):
        await connection.remove_listener(channel, handler)
    try:
        await pool.release(connection)
    except Exception:
        with contextlib.suppress(Exception):
            connection.terminate()


async def _listen_session(
    pool: asyncpg.Pool, channel: str, handler: NotifyHandler, keepalive_interval: int
) -> None:
    connection = await pool.acquire()
    try:
        await connection.add_listener(channel, handler)
        LOGGER.info(f"LISTEN active on '{channel}'")
        # A LISTEN connection is otherwise silent; the pooler would reap it as idle
        while True:
            await asyncio.sleep(keepalive_interval)
            await connection.execute("SELECT 1")
    finally:
        await _drop(pool, connection, channel, handler)


async def pg_listen(
    pool: asyncpg.Pool,
    channel: str,
    handler: NotifyHandler,
    *,
    keepalive_interval: int = 30,
    reconnect_delay: int = 10,
) -> None:
    """Run until cancelled, delivering every NOTIFY on ``channel`` to ``handler``.

    ``handler`` has asyncpg's listener signature
    ``(connection, pid, channel, payload)``; coroutine handlers are scheduled
    as tasks by asyncpg. Any failure of the held connection is logged and a
    fresh one is acquired after ``reconnect_delay`` seconds.

    Notifications sent while disconnected are lost. Callers that need them
    must reconcile from table state on reconnect.
    """
    while True:
        try:
            await _listen_session(pool, channel, handler, keepalive_interval)
        except asyncio.CancelledError:
            LOGGER.info(f"LISTEN '{channel}' stopped")
            return
        except Exception as e:
            LOGGER.error(f"LISTEN '{channel}' failed: {type(e).__name__}: {e}")
            LOGGER.warning(f"Reconnecting LISTEN '{channel}' in {reconnect_delay}s")
        try:
            await asyncio.sleep(reconnect_delay)
        except asyncio.CancelledError:
            return

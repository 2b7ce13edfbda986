"""Worker entry point"""

import asyncio
import logging
import signal

from worker.app import Worker
from worker.core import get_settings, setup_logging

LOGGER = logging.getLogger("Worker")


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)

    async def runner() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                pass

        worker = Worker(settings)
        try:
            await worker.start()
            await stop.wait()
            LOGGER.info("Shutdown signal received")
        finally:
            await worker.stop()

    try:
        asyncio.run(runner())
    except KeyboardInterrupt:
        LOGGER.warning("Shutting down due to KeyboardInterrupt...")


if __name__ == "__main__":
    main()

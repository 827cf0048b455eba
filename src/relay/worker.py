"""Standalone retry sweeper worker.

Runs RetrySweeper against the configured database until SIGINT or
SIGTERM. Several workers may run against the same PostgreSQL database.
"""

from __future__ import annotations

import asyncio
import signal

from relay.config import Settings
from relay.logging import configure_logging, get_logger
from relay.service import RelayService

logger = get_logger(__name__)


async def run_worker(settings: Settings | None = None) -> None:
    """Sweep retries until a termination signal arrives."""
    settings = settings or Settings()
    configure_logging(level=settings.log_level, format=settings.log_format)

    async with RelayService.create(settings) as service:
        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        logger.info(
            "Sweeper worker starting",
            interval_seconds=settings.sweeper_interval_seconds,
            batch_size=settings.sweeper_batch_size,
        )
        service.sweeper.start()
        try:
            await stop.wait()
            logger.info("Shutdown signal received")
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)


def main() -> None:
    """Run the sweeper worker."""
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()

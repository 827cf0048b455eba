"""Periodic driver that advances scheduled retries.

The persisted ``next_retry_at`` is the only source of truth for when a
retry runs, so a sweeper can be restarted at any time and several can
run side by side: each delivery is claimed atomically before it is
attempted.

Example:
    ```python
    sweeper = RetrySweeper(storage, executor, interval_seconds=30)
    sweeper.start()
    ...
    await sweeper.stop()
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from relay.exceptions import RelayError
from relay.logging import clear_context, get_logger
from relay.models import Delivery, Webhook, utcnow

from .executor import DeliveryAttemptExecutor

if TYPE_CHECKING:
    from relay.storage import RelayStore

logger = get_logger(__name__)


class RetrySweeper:
    """Claims due deliveries and re-invokes the executor for each."""

    def __init__(
        self,
        storage: RelayStore,
        executor: DeliveryAttemptExecutor,
        interval_seconds: float = 30.0,
        batch_size: int = 100,
        lease_seconds: int = 300,
        pending_grace_seconds: int = 60,
        max_concurrent: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the sweeper.

        Args:
            storage: Webhook and delivery persistence.
            executor: Performs delivery attempts.
            interval_seconds: Pause between sweeps that found nothing due.
            batch_size: Maximum deliveries claimed per sweep.
            lease_seconds: Age after which an in-flight attempt is abandoned.
            pending_grace_seconds: Age after which a never-attempted
                delivery is picked up.
            max_concurrent: Maximum attempts in flight during a sweep.
            clock: Source of the current time.
        """
        self._storage = storage
        self._executor = executor
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._lease_seconds = lease_seconds
        self._pending_grace_seconds = pending_grace_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._clock = clock
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Run a single sweep.

        Requeues abandoned attempts, recovers never-attempted deliveries,
        claims due retries and attempts every claimed delivery.

        Returns:
            Number of attempts made.
        """
        now = self._clock()
        max_attempts = self._executor.scheduler.max_attempts

        await self._storage.release_stale_claims(now, self._lease_seconds, max_attempts)
        claimed = await self._storage.claim_stale_pending(
            now, self._pending_grace_seconds, self._lease_seconds, self._batch_size
        )
        remaining = self._batch_size - len(claimed)
        if remaining > 0:
            claimed += await self._storage.claim_due_retries(now, max_attempts, remaining)

        if not claimed:
            return 0

        results = await asyncio.gather(
            *(self._attempt(webhook, delivery) for webhook, delivery in claimed),
            return_exceptions=True,
        )
        attempted = 0
        for (_, delivery), result in zip(claimed, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Retry attempt failed",
                    delivery_id=delivery.id,
                    error=str(result),
                )
            else:
                attempted += 1

        logger.info("Sweep finished", claimed=len(claimed), attempted=attempted)
        return attempted

    async def _attempt(self, webhook: Webhook, delivery: Delivery) -> None:
        async with self._semaphore:
            await self._executor.attempt(webhook, delivery)

    async def run_forever(self) -> None:
        """Sweep until stop() is called.

        A sweep that found work is followed immediately by another one;
        otherwise the sweeper sleeps for the configured interval.
        """
        logger.info("Retry sweeper started", interval_seconds=self._interval)
        while not self._stopping.is_set():
            try:
                attempted = await self.run_once()
            except RelayError as e:
                logger.error("Sweep failed", error=e.message)
                attempted = 0
            finally:
                clear_context()

            if attempted:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                pass
        logger.info("Retry sweeper stopped")

    def start(self) -> asyncio.Task[None]:
        """Run the sweeper as a background task."""
        if self.is_running:
            raise RuntimeError("Sweeper already running")
        self._stopping.clear()
        self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        """Ask the loop to exit and wait for the current sweep to finish."""
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None


__all__ = ["RetrySweeper"]

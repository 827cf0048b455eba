"""Event fan-out to subscribed webhooks.

Producing subsystems call ``trigger_event`` when a business event
happens. Every ACTIVE webhook of the tenant that subscribes to the event
gets its own delivery record and first attempt; one subscriber failing
never affects the others or the caller.

Example:
    ```python
    from relay.webhooks import EventDispatcher, trigger_event

    # Using dispatcher directly
    dispatcher = EventDispatcher(storage, executor)
    await dispatcher.trigger_event("tnt_1", EventType.INVOICE_PAID, {"invoiceId": "X"})

    # Using convenience function
    await trigger_event(storage, "tnt_1", "invoice.paid", {"invoiceId": "X"})
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from relay.exceptions import RelayError, ValidationError
from relay.logging import get_logger
from relay.models import Delivery, EventType, Webhook, WebhookEnvelope, utcnow

from .executor import DeliveryAttemptExecutor

if TYPE_CHECKING:
    from relay.storage import RelayStore

logger = get_logger(__name__)

DispatchMode = Literal["inline", "deferred"]


def coerce_event(event: EventType | str) -> EventType:
    """Accept an EventType or its wire value."""
    try:
        return EventType(event)
    except ValueError as e:
        raise ValidationError("event", f"unknown event type {event!r}") from e


class EventDispatcher:
    """Fans events out to webhooks and starts their deliveries.

    In ``inline`` mode trigger_event returns once every first attempt has
    finished. In ``deferred`` mode deliveries are persisted and their first
    attempts run as background tasks; call drain() to wait for them.
    """

    def __init__(
        self,
        storage: RelayStore,
        executor: DeliveryAttemptExecutor,
        mode: DispatchMode = "inline",
        max_concurrent: int = 10,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            storage: Webhook and delivery persistence.
            executor: Performs delivery attempts.
            mode: "inline" or "deferred".
            max_concurrent: Maximum first attempts in flight.
            lease_seconds: Claim lease for deferred first attempts.
            clock: Source of the current time.
        """
        if mode not in ("inline", "deferred"):
            raise ValueError(f"unknown dispatch mode: {mode}")
        self._storage = storage
        self._executor = executor
        self._mode = mode
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._lease_seconds = lease_seconds
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def mode(self) -> DispatchMode:
        return self._mode

    @property
    def pending_tasks(self) -> int:
        """Deferred first attempts not finished yet."""
        return len(self._tasks)

    async def trigger_event(
        self,
        tenant_id: str,
        event: EventType | str,
        data: dict[str, Any] | None = None,
    ) -> list[str]:
        """Deliver an event to every matching webhook of the tenant.

        Args:
            tenant_id: Tenant the event belongs to.
            event: Event type (enum member or wire value).
            data: Event-specific payload.

        Returns:
            IDs of the deliveries created; empty when nothing subscribes.

        Raises:
            ValidationError: Unknown event type.
            StorageError: The webhook lookup failed.
        """
        event_type = coerce_event(event)
        webhooks = await self._storage.get_webhooks_for_event(tenant_id, event_type)
        if not webhooks:
            logger.debug("No webhooks subscribed", tenant_id=tenant_id, event_type=event_type.value)
            return []

        now = self._clock()
        envelope = WebhookEnvelope(
            event=event_type, timestamp=now, data=data or {}, tenant_id=tenant_id
        )

        results = await asyncio.gather(
            *(self._deliver_to_webhook(webhook, envelope, now) for webhook in webhooks),
            return_exceptions=True,
        )

        delivery_ids: list[str] = []
        for webhook, result in zip(webhooks, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Webhook dispatch failed",
                    webhook_id=webhook.id,
                    event_type=event_type.value,
                    error=str(result),
                )
            else:
                delivery_ids.append(result)

        logger.info(
            "Event dispatched",
            tenant_id=tenant_id,
            event_type=event_type.value,
            webhooks=len(webhooks),
            deliveries=len(delivery_ids),
            mode=self._mode,
        )
        return delivery_ids

    async def _deliver_to_webhook(
        self, webhook: Webhook, envelope: WebhookEnvelope, now: datetime
    ) -> str:
        """Create the delivery record and start its first attempt."""
        delivery = Delivery.for_envelope(webhook.id, envelope, created_at=now)
        if self._mode == "inline":
            # Owned by this call from the start; the sweeper leaves it alone
            # until the claim lease runs out.
            delivery.claimed_at = now

        await self._storage.create_delivery(delivery)
        await self._storage.touch_triggered(webhook.id, now)
        webhook.last_triggered_at = now

        if self._mode == "inline":
            async with self._semaphore:
                await self._executor.attempt(webhook, delivery)
        else:
            task = asyncio.create_task(self._run_deferred(webhook, delivery))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return delivery.id

    async def _run_deferred(self, webhook: Webhook, delivery: Delivery) -> None:
        async with self._semaphore:
            try:
                claimed = await self._storage.claim_pending_delivery(
                    delivery.id, self._clock(), self._lease_seconds
                )
                if not claimed:
                    logger.info("Delivery claimed elsewhere", delivery_id=delivery.id)
                    return
                await self._executor.attempt(webhook, delivery)
            except RelayError as e:
                # Nobody awaits this task; the sweeper recovers the delivery.
                logger.error(
                    "Deferred delivery attempt failed",
                    webhook_id=webhook.id,
                    delivery_id=delivery.id,
                    error=e.message,
                )
            except Exception:
                logger.exception(
                    "Unexpected error in deferred delivery attempt",
                    webhook_id=webhook.id,
                    delivery_id=delivery.id,
                )

    async def drain(self) -> None:
        """Wait for every outstanding deferred first attempt."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def trigger_event(
    storage: RelayStore,
    tenant_id: str,
    event: EventType | str,
    data: dict[str, Any] | None = None,
    **executor_options: Any,
) -> list[str]:
    """Convenience function to dispatch an event inline.

    Args:
        storage: Webhook and delivery persistence.
        tenant_id: Tenant the event belongs to.
        event: Event type.
        data: Event-specific payload.
        **executor_options: Passed to DeliveryAttemptExecutor.

    Returns:
        IDs of the deliveries created.
    """
    executor = DeliveryAttemptExecutor(storage, **executor_options)
    dispatcher = EventDispatcher(storage, executor)
    return await dispatcher.trigger_event(tenant_id, event, data)


__all__ = ["DispatchMode", "EventDispatcher", "coerce_event", "trigger_event"]

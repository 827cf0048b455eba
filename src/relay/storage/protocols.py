"""Storage interfaces the delivery pipeline depends on.

RelayStorage implements both. Tests and alternative backends can
provide any object with these methods.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from relay.models import Delivery, DeliveryStatus, EventType, Webhook, WebhookStatus


@runtime_checkable
class WebhookStore(Protocol):
    """Persistence of webhook subscriptions and their counters."""

    async def store_webhook(self, webhook: Webhook) -> str: ...

    async def get_webhook(
        self, webhook_id: str, tenant_id: str | None = None
    ) -> Webhook | None: ...

    async def list_webhooks(
        self, tenant_id: str, status: WebhookStatus | None = None
    ) -> list[Webhook]: ...

    async def get_webhooks_for_event(self, tenant_id: str, event: EventType) -> list[Webhook]: ...

    async def update_webhook(
        self, webhook_id: str, tenant_id: str, updated_at: datetime, **values: object
    ) -> Webhook | None: ...

    async def rotate_secret(
        self, webhook_id: str, tenant_id: str, new_secret: str, rotated_at: datetime
    ) -> Webhook | None: ...

    async def delete_webhook(self, webhook_id: str, tenant_id: str) -> bool: ...

    async def touch_triggered(self, webhook_id: str, triggered_at: datetime) -> None: ...

    async def record_success(self, webhook_id: str, at: datetime) -> Webhook | None: ...

    async def record_failure(self, webhook_id: str, at: datetime) -> Webhook | None: ...

    async def suspend_webhook(self, webhook_id: str, failure_threshold: int) -> bool: ...


@runtime_checkable
class DeliveryStore(Protocol):
    """Persistence of delivery records and the claim protocol."""

    async def create_delivery(self, delivery: Delivery) -> str: ...

    async def save_delivery(self, delivery: Delivery) -> bool: ...

    async def get_delivery(self, delivery_id: str) -> Delivery | None: ...

    async def list_deliveries(
        self,
        webhook_id: str,
        limit: int = 50,
        offset: int = 0,
        status: DeliveryStatus | None = None,
    ) -> tuple[list[Delivery], int]: ...

    async def claim_due_retries(
        self, now: datetime, max_attempts: int, limit: int = 100
    ) -> list[tuple[Webhook, Delivery]]: ...

    async def claim_pending_delivery(
        self, delivery_id: str, now: datetime, lease_seconds: int
    ) -> bool: ...

    async def claim_stale_pending(
        self, now: datetime, grace_seconds: int, lease_seconds: int, limit: int = 100
    ) -> list[tuple[Webhook, Delivery]]: ...

    async def release_stale_claims(
        self, now: datetime, lease_seconds: int, max_attempts: int
    ) -> int: ...


@runtime_checkable
class RelayStore(WebhookStore, DeliveryStore, Protocol):
    """Everything the delivery pipeline needs from storage."""


__all__ = ["DeliveryStore", "RelayStore", "WebhookStore"]

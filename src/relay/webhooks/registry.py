"""Tenant-scoped management of webhook subscriptions.

The registry validates input, generates signing secrets and enforces the
status rules: tenants switch a webhook between ACTIVE and INACTIVE,
SUSPENDED is only reached automatically, and leaving SUSPENDED is an
explicit operator action that also resets the failure counter.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from relay.exceptions import NotFoundError, ValidationError
from relay.logging import get_logger
from relay.models import (
    Delivery,
    DeliveryStatus,
    EventType,
    Webhook,
    WebhookStatus,
    WebhookUpdate,
    utcnow,
)

from .signature import generate_secret

if TYPE_CHECKING:
    from relay.storage import RelayStore

logger = get_logger(__name__)


def _validation_error(exc: PydanticValidationError) -> ValidationError:
    """Convert the first pydantic error into a Relay ValidationError."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "webhook"
    return ValidationError(field, first.get("msg", "invalid value"))


class WebhookRegistry:
    """CRUD over a tenant's webhooks.

    Example:
        ```python
        registry = WebhookRegistry(storage)
        webhook = await registry.create_webhook(
            "tnt_1", "https://example.com/hooks", ["invoice.paid"]
        )
        await registry.regenerate_secret("tnt_1", webhook.id)
        ```
    """

    def __init__(
        self,
        storage: RelayStore,
        history_default_limit: int = 50,
        history_max_limit: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._history_default_limit = history_default_limit
        self._history_max_limit = history_max_limit
        self._clock = clock

    async def create_webhook(
        self,
        tenant_id: str,
        url: str,
        events: Iterable[EventType | str],
        description: str | None = None,
    ) -> Webhook:
        """Register a new ACTIVE webhook with a fresh secret.

        Raises:
            ValidationError: Malformed URL or empty/unknown event set.
        """
        now = self._clock()
        try:
            webhook = Webhook(
                tenant_id=tenant_id,
                url=url,
                events=list(events),
                description=description,
                secret=generate_secret(),
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise _validation_error(e) from e

        await self._storage.store_webhook(webhook)
        logger.info(
            "Webhook created",
            tenant_id=tenant_id,
            webhook_id=webhook.id,
            events=[event.value for event in webhook.events],
        )
        return webhook

    async def get_webhooks(
        self, tenant_id: str, status: WebhookStatus | None = None
    ) -> list[Webhook]:
        """List a tenant's webhooks, newest first."""
        return await self._storage.list_webhooks(tenant_id, status=status)

    async def get_webhook_by_id(self, tenant_id: str, webhook_id: str) -> Webhook:
        """Get one of the tenant's webhooks.

        Raises:
            NotFoundError: No such webhook for this tenant.
        """
        webhook = await self._storage.get_webhook(webhook_id, tenant_id=tenant_id)
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        return webhook

    async def update_webhook(
        self,
        tenant_id: str,
        webhook_id: str,
        patch: WebhookUpdate | dict[str, Any],
    ) -> Webhook:
        """Apply a partial update.

        Setting ``status`` to ACTIVE on a suspended webhook reactivates it.
        Setting SUSPENDED by hand is not allowed.

        Raises:
            NotFoundError: No such webhook for this tenant.
            ValidationError: Invalid patch.
        """
        if not isinstance(patch, WebhookUpdate):
            try:
                patch = WebhookUpdate.model_validate(patch)
            except PydanticValidationError as e:
                raise _validation_error(e) from e

        values = patch.model_dump(exclude_unset=True)
        for field in ("url", "events"):
            if field in values and values[field] is None:
                raise ValidationError(field, "must not be null")
        if values.get("status") == WebhookStatus.SUSPENDED:
            raise ValidationError("status", "suspension is automatic and cannot be set")

        current = await self.get_webhook_by_id(tenant_id, webhook_id)
        if values.get("status") == WebhookStatus.ACTIVE and current.is_suspended:
            values["failure_count"] = 0
            logger.info("Webhook reactivated", tenant_id=tenant_id, webhook_id=webhook_id)

        if not values:
            return current

        updated = await self._storage.update_webhook(
            webhook_id, tenant_id, self._clock(), **values
        )
        if updated is None:
            raise NotFoundError("webhook", webhook_id)
        logger.info(
            "Webhook updated",
            tenant_id=tenant_id,
            webhook_id=webhook_id,
            fields=sorted(values),
        )
        return updated

    async def delete_webhook(self, tenant_id: str, webhook_id: str) -> None:
        """Delete a webhook and its delivery history.

        Raises:
            NotFoundError: No such webhook for this tenant.
        """
        if not await self._storage.delete_webhook(webhook_id, tenant_id):
            raise NotFoundError("webhook", webhook_id)
        logger.info("Webhook deleted", tenant_id=tenant_id, webhook_id=webhook_id)

    async def regenerate_secret(self, tenant_id: str, webhook_id: str) -> Webhook:
        """Replace the signing secret.

        Deliveries already signed with the old secret will fail subscriber
        verification unless the subscriber accepts the previous secret
        during the rotation grace window.

        Raises:
            NotFoundError: No such webhook for this tenant.
        """
        webhook = await self._storage.rotate_secret(
            webhook_id, tenant_id, generate_secret(), self._clock()
        )
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        logger.info("Webhook secret regenerated", tenant_id=tenant_id, webhook_id=webhook_id)
        return webhook

    async def reactivate_webhook(self, tenant_id: str, webhook_id: str) -> Webhook:
        """Operator un-suspend: set ACTIVE and reset the failure counter."""
        return await self.update_webhook(
            tenant_id, webhook_id, WebhookUpdate(status=WebhookStatus.ACTIVE)
        )

    async def get_delivery_history(
        self,
        tenant_id: str,
        webhook_id: str,
        limit: int | None = None,
        offset: int = 0,
        status: DeliveryStatus | None = None,
    ) -> tuple[list[Delivery], int]:
        """Page through a webhook's deliveries, newest first.

        Returns:
            The page and the total number of matching deliveries.

        Raises:
            NotFoundError: No such webhook for this tenant.
            ValidationError: limit or offset out of range.
        """
        if limit is None:
            limit = self._history_default_limit
        if not 1 <= limit <= self._history_max_limit:
            raise ValidationError("limit", f"must be between 1 and {self._history_max_limit}")
        if offset < 0:
            raise ValidationError("offset", "must not be negative")

        await self.get_webhook_by_id(tenant_id, webhook_id)
        return await self._storage.list_deliveries(
            webhook_id, limit=limit, offset=offset, status=status
        )


__all__ = ["WebhookRegistry"]

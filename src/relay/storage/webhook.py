"""Webhook storage operations for Relay.

Counter and status changes are single UPDATE statements so concurrent
attempts for the same webhook never lose an increment.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select, update

from relay.models import WebhookStatus

from .retry import storage_operation, storage_operation_once
from .tables import webhook_deliveries, webhooks

if TYPE_CHECKING:
    from relay.models import EventType, Webhook


def _column_values(values: dict[str, Any]) -> dict[str, Any]:
    """Convert model-level values to column values."""
    converted = dict(values)
    if "url" in converted and converted["url"] is not None:
        converted["url"] = str(converted["url"])
    if "events" in converted and converted["events"] is not None:
        converted["events"] = [getattr(e, "value", e) for e in converted["events"]]
    if "status" in converted and converted["status"] is not None:
        converted["status"] = getattr(converted["status"], "value", converted["status"])
    return converted


class WebhookMixin:
    """Mixin providing webhook operations for RelayStorage.

    This mixin expects the following from the base class:
    - engine: AsyncEngine
    - _webhook_to_row(webhook) -> dict
    - _row_to_webhook(row) -> Webhook
    """

    engine: Any
    _webhook_to_row: Any
    _row_to_webhook: Any

    @storage_operation
    async def store_webhook(self, webhook: Webhook) -> str:
        """Insert a new webhook and return its ID."""
        async with self.engine.begin() as conn:
            await conn.execute(insert(webhooks).values(**self._webhook_to_row(webhook)))
        return webhook.id

    @storage_operation
    async def get_webhook(self, webhook_id: str, tenant_id: str | None = None) -> Webhook | None:
        """Get a webhook by ID, optionally scoped to a tenant."""
        query = select(webhooks).where(webhooks.c.id == webhook_id)
        if tenant_id is not None:
            query = query.where(webhooks.c.tenant_id == tenant_id)
        async with self.engine.connect() as conn:
            row = (await conn.execute(query)).first()
        return self._row_to_webhook(row) if row is not None else None

    @storage_operation
    async def list_webhooks(
        self,
        tenant_id: str,
        status: WebhookStatus | None = None,
    ) -> list[Webhook]:
        """List a tenant's webhooks, newest first."""
        query = select(webhooks).where(webhooks.c.tenant_id == tenant_id)
        if status is not None:
            query = query.where(webhooks.c.status == status.value)
        query = query.order_by(webhooks.c.created_at.desc(), webhooks.c.id.desc())
        async with self.engine.connect() as conn:
            rows = (await conn.execute(query)).all()
        return [self._row_to_webhook(row) for row in rows]

    async def get_webhooks_for_event(self, tenant_id: str, event: EventType) -> list[Webhook]:
        """Get the tenant's ACTIVE webhooks subscribed to an event."""
        active = await self.list_webhooks(tenant_id, status=WebhookStatus.ACTIVE)
        return [webhook for webhook in active if webhook.subscribes_to(event)]

    @storage_operation
    async def update_webhook(
        self,
        webhook_id: str,
        tenant_id: str,
        updated_at: datetime,
        **values: Any,
    ) -> Webhook | None:
        """Apply field updates to a tenant's webhook.

        Returns:
            The updated webhook, or None if no such webhook exists.
        """
        stmt = (
            update(webhooks)
            .where(webhooks.c.id == webhook_id, webhooks.c.tenant_id == tenant_id)
            .values(updated_at=updated_at, **_column_values(values))
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            if result.rowcount == 0:
                return None
            row = (await conn.execute(select(webhooks).where(webhooks.c.id == webhook_id))).first()
        return self._row_to_webhook(row)

    @storage_operation
    async def rotate_secret(
        self,
        webhook_id: str,
        tenant_id: str,
        new_secret: str,
        rotated_at: datetime,
    ) -> Webhook | None:
        """Replace the secret, keeping the old one as previous_secret."""
        stmt = (
            update(webhooks)
            .where(webhooks.c.id == webhook_id, webhooks.c.tenant_id == tenant_id)
            .values(
                previous_secret=webhooks.c.secret,
                secret=new_secret,
                secret_rotated_at=rotated_at,
                updated_at=rotated_at,
            )
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            if result.rowcount == 0:
                return None
            row = (await conn.execute(select(webhooks).where(webhooks.c.id == webhook_id))).first()
        return self._row_to_webhook(row)

    @storage_operation
    async def delete_webhook(self, webhook_id: str, tenant_id: str) -> bool:
        """Delete a tenant's webhook together with its delivery history.

        Returns:
            True if deleted, False if not found.
        """
        async with self.engine.begin() as conn:
            owned = (
                await conn.execute(
                    select(webhooks.c.id).where(
                        webhooks.c.id == webhook_id, webhooks.c.tenant_id == tenant_id
                    )
                )
            ).first()
            if owned is None:
                return False
            await conn.execute(
                delete(webhook_deliveries).where(webhook_deliveries.c.webhook_id == webhook_id)
            )
            await conn.execute(delete(webhooks).where(webhooks.c.id == webhook_id))
        return True

    @storage_operation
    async def touch_triggered(self, webhook_id: str, triggered_at: datetime) -> None:
        """Record that an event was fanned out to this webhook."""
        async with self.engine.begin() as conn:
            await conn.execute(
                update(webhooks)
                .where(webhooks.c.id == webhook_id)
                .values(last_triggered_at=triggered_at)
            )

    @storage_operation_once
    async def record_success(self, webhook_id: str, at: datetime) -> Webhook | None:
        """Atomically increment success_count and return the fresh row."""
        return await self._increment(webhook_id, "success_count", last_success_at=at)

    @storage_operation_once
    async def record_failure(self, webhook_id: str, at: datetime) -> Webhook | None:
        """Atomically increment failure_count and return the fresh row."""
        return await self._increment(webhook_id, "failure_count", last_failure_at=at)

    async def _increment(self, webhook_id: str, counter: str, **values: Any) -> Webhook | None:
        column = webhooks.c[counter]
        assignments = {column: column + 1}
        assignments.update({webhooks.c[name]: value for name, value in values.items()})
        stmt = update(webhooks).where(webhooks.c.id == webhook_id).values(assignments)
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            if result.rowcount == 0:
                return None
            row = (await conn.execute(select(webhooks).where(webhooks.c.id == webhook_id))).first()
        return self._row_to_webhook(row)

    @storage_operation
    async def suspend_webhook(self, webhook_id: str, failure_threshold: int) -> bool:
        """Suspend an ACTIVE webhook if its stored counters cross the threshold.

        The condition is evaluated by the database against the current
        counters, so a concurrent success cannot be overlooked.

        Returns:
            True if this call suspended the webhook.
        """
        stmt = (
            update(webhooks)
            .where(
                webhooks.c.id == webhook_id,
                webhooks.c.status == WebhookStatus.ACTIVE.value,
                webhooks.c.failure_count > failure_threshold,
                webhooks.c.success_count == 0,
            )
            .values(status=WebhookStatus.SUSPENDED.value)
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
        return bool(result.rowcount == 1)

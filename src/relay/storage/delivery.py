"""Delivery storage operations for Relay.

Besides plain persistence this module owns the claim protocol that lets
several sweeper workers share one database. A worker owns a delivery
only if its conditional UPDATE changed exactly one row; losers skip it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, insert, or_, select, update

from relay.models import DeliveryStatus, WebhookStatus

from .retry import storage_operation
from .tables import webhook_deliveries, webhooks

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection
    from sqlalchemy.sql.elements import ColumnElement

    from relay.models import Delivery, Webhook

logger = logging.getLogger(__name__)

_TERMINAL = (DeliveryStatus.SUCCESS.value, DeliveryStatus.FAILED.value)
_MUTABLE_FIELDS = (
    "status",
    "attempts",
    "response_status",
    "response_body",
    "error_message",
    "next_retry_at",
    "delivered_at",
    "claimed_at",
)

ABANDONED_MESSAGE = "Attempt abandoned: worker did not report back before the claim lease expired"


class DeliveryMixin:
    """Mixin providing delivery operations for RelayStorage.

    This mixin expects the following from the base class:
    - engine: AsyncEngine
    - _delivery_to_row(delivery) -> dict
    - _row_to_delivery(row) -> Delivery
    - _row_to_webhook(row) -> Webhook
    """

    engine: Any
    _delivery_to_row: Any
    _row_to_delivery: Any
    _row_to_webhook: Any

    @storage_operation
    async def create_delivery(self, delivery: Delivery) -> str:
        """Insert a new delivery record and return its ID."""
        async with self.engine.begin() as conn:
            await conn.execute(
                insert(webhook_deliveries).values(**self._delivery_to_row(delivery))
            )
        return delivery.id

    @storage_operation
    async def save_delivery(self, delivery: Delivery) -> bool:
        """Persist a delivery's mutable fields.

        A delivery already stored as SUCCESS or FAILED is never
        overwritten.

        Returns:
            True if the row was updated, False if it was terminal or missing.
        """
        row = self._delivery_to_row(delivery)
        stmt = (
            update(webhook_deliveries)
            .where(
                webhook_deliveries.c.id == delivery.id,
                webhook_deliveries.c.status.not_in(_TERMINAL),
            )
            .values({name: row[name] for name in _MUTABLE_FIELDS})
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
        if result.rowcount == 0:
            logger.warning(
                "Delivery not saved: terminal or missing",
                extra={"delivery_id": delivery.id, "status": delivery.status.value},
            )
            return False
        return True

    @storage_operation
    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        """Get a delivery by ID."""
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    select(webhook_deliveries).where(webhook_deliveries.c.id == delivery_id)
                )
            ).first()
        return self._row_to_delivery(row) if row is not None else None

    @storage_operation
    async def list_deliveries(
        self,
        webhook_id: str,
        limit: int = 50,
        offset: int = 0,
        status: DeliveryStatus | None = None,
    ) -> tuple[list[Delivery], int]:
        """Delivery history for a webhook, newest first.

        Returns:
            The requested page and the total number of matching deliveries.
        """
        conditions: list[ColumnElement[bool]] = [webhook_deliveries.c.webhook_id == webhook_id]
        if status is not None:
            conditions.append(webhook_deliveries.c.status == status.value)

        page = (
            select(webhook_deliveries)
            .where(*conditions)
            .order_by(webhook_deliveries.c.created_at.desc(), webhook_deliveries.c.id.desc())
            .limit(limit)
            .offset(offset)
        )
        count = select(func.count()).select_from(webhook_deliveries).where(*conditions)

        async with self.engine.connect() as conn:
            rows = (await conn.execute(page)).all()
            total = (await conn.execute(count)).scalar_one()
        return [self._row_to_delivery(row) for row in rows], int(total)

    @storage_operation
    async def claim_due_retries(
        self,
        now: datetime,
        max_attempts: int,
        limit: int = 100,
    ) -> list[tuple[Webhook, Delivery]]:
        """Claim deliveries whose retry is due.

        Selection: status RETRYING, next_retry_at <= now, attempts below the
        maximum, webhook ACTIVE. Claiming clears next_retry_at and stamps
        claimed_at, which removes the row from every other worker's
        selection.
        """
        d = webhook_deliveries
        due = and_(
            d.c.status == DeliveryStatus.RETRYING.value,
            d.c.next_retry_at.is_not(None),
            d.c.next_retry_at <= now,
            d.c.attempts < max_attempts,
        )
        candidates = (
            select(d.c.id)
            .select_from(d.join(webhooks, d.c.webhook_id == webhooks.c.id))
            .where(due, webhooks.c.status == WebhookStatus.ACTIVE.value)
            .order_by(d.c.next_retry_at, d.c.created_at)
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            ids = list((await conn.execute(candidates)).scalars())

        claimed: list[str] = []
        for delivery_id in ids:
            stmt = (
                update(d)
                .where(d.c.id == delivery_id, due)
                .values(next_retry_at=None, claimed_at=now)
            )
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
            if result.rowcount == 1:
                claimed.append(delivery_id)

        return await self._load_claimed(claimed)

    @storage_operation
    async def claim_pending_delivery(
        self,
        delivery_id: str,
        now: datetime,
        lease_seconds: int,
    ) -> bool:
        """Claim a never-attempted delivery for its first attempt.

        Succeeds if the delivery is PENDING and either unclaimed or its
        previous claim is older than the lease.
        """
        d = webhook_deliveries
        stmt = (
            update(d)
            .where(
                d.c.id == delivery_id,
                d.c.status == DeliveryStatus.PENDING.value,
                or_(
                    d.c.claimed_at.is_(None),
                    d.c.claimed_at <= now - timedelta(seconds=lease_seconds),
                ),
            )
            .values(claimed_at=now)
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
        return bool(result.rowcount == 1)

    @storage_operation
    async def claim_stale_pending(
        self,
        now: datetime,
        grace_seconds: int,
        lease_seconds: int,
        limit: int = 100,
    ) -> list[tuple[Webhook, Delivery]]:
        """Claim PENDING deliveries whose first attempt never happened.

        Covers deferred dispatch whose background task died with its
        process. Only deliveries older than the grace period are touched.
        """
        d = webhook_deliveries
        candidates = (
            select(d.c.id)
            .select_from(d.join(webhooks, d.c.webhook_id == webhooks.c.id))
            .where(
                d.c.status == DeliveryStatus.PENDING.value,
                d.c.created_at <= now - timedelta(seconds=grace_seconds),
                or_(
                    d.c.claimed_at.is_(None),
                    d.c.claimed_at <= now - timedelta(seconds=lease_seconds),
                ),
                webhooks.c.status == WebhookStatus.ACTIVE.value,
            )
            .order_by(d.c.created_at)
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            ids = list((await conn.execute(candidates)).scalars())

        claimed: list[str] = []
        for delivery_id in ids:
            if await self.claim_pending_delivery(delivery_id, now, lease_seconds):
                claimed.append(delivery_id)

        return await self._load_claimed(claimed)

    @storage_operation
    async def release_stale_claims(
        self,
        now: datetime,
        lease_seconds: int,
        max_attempts: int,
    ) -> int:
        """Requeue in-flight attempts whose worker disappeared.

        An in-flight attempt is RETRYING with no next_retry_at. If its claim
        is older than the lease it is made due immediately, or marked
        FAILED when it has no attempts left.

        Returns:
            Number of deliveries released or failed.
        """
        d = webhook_deliveries
        stale = and_(
            d.c.status == DeliveryStatus.RETRYING.value,
            d.c.next_retry_at.is_(None),
            d.c.claimed_at.is_not(None),
            d.c.claimed_at <= now - timedelta(seconds=lease_seconds),
        )
        async with self.engine.begin() as conn:
            requeued = await conn.execute(
                update(d).where(stale, d.c.attempts < max_attempts).values(next_retry_at=now)
            )
            exhausted = await conn.execute(
                update(d)
                .where(stale, d.c.attempts >= max_attempts)
                .values(status=DeliveryStatus.FAILED.value, error_message=ABANDONED_MESSAGE)
            )
        released = int(requeued.rowcount) + int(exhausted.rowcount)
        if released:
            logger.warning("Released stale delivery claims", extra={"count": released})
        return released

    async def _load_claimed(self, delivery_ids: list[str]) -> list[tuple[Webhook, Delivery]]:
        if not delivery_ids:
            return []
        async with self.engine.connect() as conn:
            return await self._load_pairs(conn, delivery_ids)

    async def _load_pairs(
        self, conn: AsyncConnection, delivery_ids: list[str]
    ) -> list[tuple[Webhook, Delivery]]:
        delivery_rows = (
            await conn.execute(
                select(webhook_deliveries).where(webhook_deliveries.c.id.in_(delivery_ids))
            )
        ).all()
        deliveries = {row.id: self._row_to_delivery(row) for row in delivery_rows}
        webhook_ids = {delivery.webhook_id for delivery in deliveries.values()}
        webhook_rows = (
            await conn.execute(select(webhooks).where(webhooks.c.id.in_(webhook_ids)))
        ).all()
        hooks = {row.id: self._row_to_webhook(row) for row in webhook_rows}

        pairs: list[tuple[Webhook, Delivery]] = []
        for delivery_id in delivery_ids:
            delivery = deliveries.get(delivery_id)
            if delivery is not None and delivery.webhook_id in hooks:
                pairs.append((hooks[delivery.webhook_id], delivery))
        return pairs

"""SQL storage client for Relay.

This module provides the main RelayStorage class that combines
all storage operations through mixins.

Example:
    ```python
    from relay.storage import RelayStorage

    async with RelayStorage("sqlite+aiosqlite:///./relay.db") as storage:
        await storage.store_webhook(webhook)
        due = await storage.claim_due_retries(now, max_attempts=5)
    ```
"""

from __future__ import annotations

from .base import StorageBase
from .delivery import DeliveryMixin
from .webhook import WebhookMixin


class RelayStorage(WebhookMixin, DeliveryMixin, StorageBase):
    """Async SQL storage for webhooks and deliveries.

    This class combines functionality from multiple mixins:
    - WebhookMixin: store_webhook, get_webhook, update_webhook, the atomic
      success/failure counters and conditional suspension
    - DeliveryMixin: create_delivery, save_delivery, list_deliveries and
      the claim operations used by the sweeper

    Any SQLAlchemy async URL works. SQLite (aiosqlite) suits development
    and tests; run several sweeper workers only against PostgreSQL.
    """

    async def __aenter__(self) -> RelayStorage:
        await self.initialize()
        return self

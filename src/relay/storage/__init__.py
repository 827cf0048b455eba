"""Storage backends for Relay.

Webhooks and deliveries live in a SQL database accessed through
SQLAlchemy's async engine.

Example:
    ```python
    from relay.storage import RelayStorage

    async with RelayStorage() as storage:
        await storage.store_webhook(webhook)
        history, total = await storage.list_deliveries(webhook.id)
    ```
"""

from .client import RelayStorage
from .delivery import ABANDONED_MESSAGE
from .protocols import DeliveryStore, RelayStore, WebhookStore
from .tables import metadata, webhook_deliveries, webhooks

__all__ = [
    "ABANDONED_MESSAGE",
    "DeliveryStore",
    "RelayStorage",
    "RelayStore",
    "WebhookStore",
    "metadata",
    "webhook_deliveries",
    "webhooks",
]

"""Relay: signed, retried webhook delivery.

Notifies tenant-owned HTTP endpoints when business events occur, with
at-least-once delivery, HMAC-SHA256 signatures, a fixed backoff
schedule and automatic suspension of chronically failing subscribers.

Quick Start:
    from relay.service import RelayService

    async with RelayService.create() as relay:
        webhook = await relay.registry.create_webhook(
            tenant_id="tnt_1",
            url="https://example.com/hooks",
            events=["invoice.paid"],
        )
        await relay.trigger_event("tnt_1", "invoice.paid", {"invoiceId": "X"})

Run the retry sweeper with ``python -m relay`` and the admin API with
``uvicorn relay.api:app``.
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    DeliveryProtocolError,
    DeliveryStateError,
    DeliveryTransportError,
    NotFoundError,
    RelayError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    Delivery,
    DeliveryStatus,
    EventType,
    Webhook,
    WebhookEnvelope,
    WebhookStatus,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "RelayError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "ConfigurationError",
    "DeliveryStateError",
    "DeliveryError",
    "DeliveryTransportError",
    "DeliveryProtocolError",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "Delivery",
    "DeliveryStatus",
    "EventType",
    "Webhook",
    "WebhookEnvelope",
    "WebhookStatus",
]

"""Relay data models.

Webhook subscriptions, delivery records and the wire envelope.
"""

from .base import generate_id, utcnow
from .delivery import (
    DEFAULT_RESPONSE_BODY_LIMIT,
    TERMINAL_STATUSES,
    Delivery,
    DeliveryStatus,
    WebhookEnvelope,
)
from .webhook import ALL_EVENT_TYPES, EventType, Webhook, WebhookStatus, WebhookUpdate

__all__ = [
    "ALL_EVENT_TYPES",
    "DEFAULT_RESPONSE_BODY_LIMIT",
    "Delivery",
    "DeliveryStatus",
    "EventType",
    "TERMINAL_STATUSES",
    "Webhook",
    "WebhookEnvelope",
    "WebhookStatus",
    "WebhookUpdate",
    "generate_id",
    "utcnow",
]

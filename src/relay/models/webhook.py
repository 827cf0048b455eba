"""Webhook subscription models.

A webhook is a tenant-owned subscription: a URL, the set of business
events it wants, and the secret used to sign every payload sent to it.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from .base import generate_id, utcnow


class EventType(str, Enum):
    """Business events a webhook can subscribe to."""

    INVOICE_CREATED = "invoice.created"
    INVOICE_UPDATED = "invoice.updated"
    INVOICE_SENT = "invoice.sent"
    INVOICE_VIEWED = "invoice.viewed"
    INVOICE_PAID = "invoice.paid"
    INVOICE_OVERDUE = "invoice.overdue"
    INVOICE_CANCELLED = "invoice.cancelled"
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    PAYMENT_RECEIVED = "payment.received"
    PAYMENT_FAILED = "payment.failed"


ALL_EVENT_TYPES: list[EventType] = list(EventType)


class WebhookStatus(str, Enum):
    """Subscription state.

    ACTIVE and INACTIVE are set by the tenant. SUSPENDED is only ever set
    automatically and only from ACTIVE; leaving it takes an operator.
    """

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


def _dedupe_events(events: list[EventType]) -> list[EventType]:
    seen: set[EventType] = set()
    unique: list[EventType] = []
    for event in events:
        if event not in seen:
            seen.add(event)
            unique.append(event)
    return unique


class Webhook(BaseModel):
    """A registered webhook subscription.

    Attributes:
        id: Unique identifier for this webhook.
        tenant_id: Tenant that owns this webhook.
        url: HTTP(S) endpoint receiving event deliveries.
        events: Event types this webhook subscribes to (non-empty).
        secret: Hex-encoded 256-bit HMAC signing secret.
        description: Optional human-readable description.
        status: active, inactive or suspended.
        success_count: Successful deliveries (monotonic).
        failure_count: Failed attempts (monotonic until reactivation).
        last_triggered_at: Last time an event was fanned out to this webhook.
        last_success_at: Last successful attempt.
        last_failure_at: Last failed attempt.
        previous_secret: Secret replaced by the most recent rotation.
        secret_rotated_at: When the secret was last rotated.
        created_at: When the webhook was registered.
        updated_at: When the webhook was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    tenant_id: str = Field(min_length=1, description="Owning tenant")
    url: HttpUrl = Field(description="Endpoint receiving deliveries")
    events: list[EventType] = Field(min_length=1, description="Subscribed event types")
    secret: str = Field(description="HMAC-SHA256 signing secret (hex)")
    description: str | None = Field(default=None, description="Human-readable description")
    status: WebhookStatus = Field(default=WebhookStatus.ACTIVE)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    previous_secret: str | None = Field(default=None, description="Secret before last rotation")
    secret_rotated_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("events")
    @classmethod
    def normalize_events(cls, events: list[EventType]) -> list[EventType]:
        return _dedupe_events(events)

    @property
    def is_active(self) -> bool:
        return self.status == WebhookStatus.ACTIVE

    @property
    def is_suspended(self) -> bool:
        return self.status == WebhookStatus.SUSPENDED

    def subscribes_to(self, event: EventType) -> bool:
        """Check if this webhook is active and subscribed to the event."""
        return self.is_active and event in self.events

    def verification_secrets(self, now: datetime, grace_seconds: int) -> list[str]:
        """Secrets a signature may have been produced with.

        The previous secret is only included while the rotation grace
        window is open.
        """
        secrets = [self.secret]
        if (
            grace_seconds > 0
            and self.previous_secret
            and self.secret_rotated_at is not None
            and now - self.secret_rotated_at <= timedelta(seconds=grace_seconds)
        ):
            secrets.append(self.previous_secret)
        return secrets


class WebhookUpdate(BaseModel):
    """Partial update of a webhook. Unset fields are left untouched."""

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl | None = None
    events: list[EventType] | None = Field(default=None, min_length=1)
    description: str | None = None
    status: WebhookStatus | None = None

    @field_validator("events")
    @classmethod
    def normalize_events(cls, events: list[EventType] | None) -> list[EventType] | None:
        return _dedupe_events(events) if events is not None else None


__all__ = [
    "ALL_EVENT_TYPES",
    "EventType",
    "Webhook",
    "WebhookStatus",
    "WebhookUpdate",
]

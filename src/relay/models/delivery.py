"""Delivery and envelope models.

A delivery is one event's transmission lifecycle to one webhook,
spanning every retry. Its status moves PENDING -> RETRYING -> SUCCESS
or FAILED; the last two are terminal.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from relay.exceptions import DeliveryStateError

from .base import generate_id, utcnow
from .webhook import EventType

DEFAULT_RESPONSE_BODY_LIMIT = 1000


class DeliveryStatus(str, Enum):
    """Delivery lifecycle state."""

    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({DeliveryStatus.SUCCESS, DeliveryStatus.FAILED})


class WebhookEnvelope(BaseModel):
    """JSON body posted to subscribers.

    The tenant ID keeps its camelCase wire name so subscribers see
    ``{"event", "timestamp", "data", "tenantId"}``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    event: EventType
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str = Field(alias="tenantId")

    def to_payload(self) -> dict[str, Any]:
        """Wire representation (JSON-safe dict, ISO-8601 timestamp)."""
        return self.model_dump(mode="json", by_alias=True)


class Delivery(BaseModel):
    """Record of an event's delivery to one webhook.

    Attributes:
        id: Unique identifier, also sent as X-Webhook-Delivery-ID.
        webhook_id: Target webhook.
        event: Event type being delivered.
        payload: Envelope as sent on the wire. Never modified.
        status: pending, retrying, success or failed.
        attempts: Attempts made so far.
        response_status: HTTP status of the latest attempt, if any.
        response_body: Latest response body, truncated.
        error_message: Why the latest attempt failed.
        next_retry_at: When the sweeper may pick this delivery up.
        delivered_at: When a 2xx response was received.
        claimed_at: When the current (or last) attempt started.
        created_at: When the event was fanned out.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    webhook_id: str
    event: EventType
    payload: dict[str, Any]
    status: DeliveryStatus = Field(default=DeliveryStatus.PENDING)
    attempts: int = Field(default=0, ge=0)
    response_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None
    claimed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_envelope(
        cls, webhook_id: str, envelope: WebhookEnvelope, created_at: datetime | None = None
    ) -> Delivery:
        """Create a PENDING delivery of an envelope to a webhook."""
        return cls(
            webhook_id=webhook_id,
            event=envelope.event,
            payload=envelope.to_payload(),
            created_at=created_at or utcnow(),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise DeliveryStateError(
                f"Delivery {self.id} is {self.status.value} and cannot change state"
            )

    def begin_attempt(self, now: datetime, max_attempts: int) -> Delivery:
        """Count a new attempt and mark the delivery in flight."""
        self._ensure_open()
        if self.attempts >= max_attempts:
            raise DeliveryStateError(
                f"Delivery {self.id} already used {self.attempts} of {max_attempts} attempts"
            )
        self.attempts += 1
        self.status = DeliveryStatus.RETRYING
        self.next_retry_at = None
        self.claimed_at = now
        self.response_status = None
        self.response_body = None
        self.error_message = None
        return self

    def record_response(
        self,
        status_code: int,
        body: str | None,
        limit: int = DEFAULT_RESPONSE_BODY_LIMIT,
    ) -> Delivery:
        """Store the subscriber's answer, truncating the body."""
        self.response_status = status_code
        self.response_body = body[:limit] if body else None
        return self

    def mark_success(self, now: datetime) -> Delivery:
        """Mark delivery as delivered (terminal)."""
        self._ensure_open()
        self.status = DeliveryStatus.SUCCESS
        self.delivered_at = now
        self.next_retry_at = None
        return self

    def mark_retrying(self, next_retry_at: datetime) -> Delivery:
        """Schedule the next attempt."""
        self._ensure_open()
        self.status = DeliveryStatus.RETRYING
        self.next_retry_at = next_retry_at
        return self

    def mark_failed(self) -> Delivery:
        """Give up on this delivery (terminal)."""
        self._ensure_open()
        self.status = DeliveryStatus.FAILED
        self.next_retry_at = None
        return self


__all__ = [
    "DEFAULT_RESPONSE_BODY_LIMIT",
    "Delivery",
    "DeliveryStatus",
    "TERMINAL_STATUSES",
    "WebhookEnvelope",
]

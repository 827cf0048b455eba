"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from relay.models import Delivery, DeliveryStatus, EventType, Webhook, WebhookStatus


class WebhookCreateRequest(BaseModel):
    """Request body for registering a webhook.

    Attributes:
        url: HTTP(S) endpoint receiving deliveries.
        events: Event types to subscribe to.
        description: Optional human-readable description.
    """

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl = Field(description="Endpoint receiving deliveries")
    events: list[EventType] = Field(min_length=1, description="Subscribed event types")
    description: str | None = Field(default=None, max_length=500)


class WebhookUpdateRequest(BaseModel):
    """Request body for a partial webhook update.

    ``status`` accepts only the tenant-controlled states. Setting
    ``active`` on a suspended webhook reactivates it.
    """

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl | None = None
    events: list[EventType] | None = Field(default=None, min_length=1)
    description: str | None = Field(default=None, max_length=500)
    status: Literal["active", "inactive"] | None = None


class WebhookResponse(BaseModel):
    """A webhook as returned by the API. The secret is never included."""

    model_config = ConfigDict(extra="forbid")

    id: str
    url: str
    events: list[EventType]
    description: str | None
    status: WebhookStatus
    suspended: bool = Field(description="True if deliveries stopped after repeated failures")
    success_count: int
    failure_count: int
    last_triggered_at: datetime | None
    last_success_at: datetime | None
    last_failure_at: datetime | None
    secret_rotated_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> WebhookResponse:
        return cls(
            id=webhook.id,
            url=str(webhook.url),
            events=webhook.events,
            description=webhook.description,
            status=webhook.status,
            suspended=webhook.is_suspended,
            success_count=webhook.success_count,
            failure_count=webhook.failure_count,
            last_triggered_at=webhook.last_triggered_at,
            last_success_at=webhook.last_success_at,
            last_failure_at=webhook.last_failure_at,
            secret_rotated_at=webhook.secret_rotated_at,
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
        )


class WebhookSecretResponse(WebhookResponse):
    """Webhook plus its signing secret (creation and rotation only)."""

    secret: str

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> WebhookSecretResponse:
        base = WebhookResponse.from_webhook(webhook)
        return cls(**base.model_dump(), secret=webhook.secret)


class WebhookListResponse(BaseModel):
    """List of a tenant's webhooks."""

    model_config = ConfigDict(extra="forbid")

    webhooks: list[WebhookResponse]
    count: int


class DeliveryResponse(BaseModel):
    """One delivery with the diagnostics of its latest attempt."""

    model_config = ConfigDict(extra="forbid")

    id: str
    webhook_id: str
    event: EventType
    payload: dict[str, Any]
    status: DeliveryStatus
    attempts: int
    response_status: int | None
    response_body: str | None
    error_message: str | None
    next_retry_at: datetime | None
    delivered_at: datetime | None
    created_at: datetime

    @classmethod
    def from_delivery(cls, delivery: Delivery) -> DeliveryResponse:
        return cls.model_validate(delivery.model_dump(exclude={"claimed_at"}))


class DeliveryListResponse(BaseModel):
    """A page of delivery history, newest first."""

    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryResponse]
    total: int
    limit: int
    offset: int


class TriggerEventRequest(BaseModel):
    """Request body for manually triggering an event."""

    model_config = ConfigDict(extra="forbid")

    event: EventType
    data: dict[str, Any] = Field(default_factory=dict)


class TriggerEventResponse(BaseModel):
    """Deliveries created by a manual trigger."""

    model_config = ConfigDict(extra="forbid")

    event: EventType
    delivery_ids: list[str]


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, unhealthy).
        version: API version.
        storage_connected: Whether the database engine is up.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    storage_connected: bool

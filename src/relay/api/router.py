"""FastAPI router for Relay's administrative endpoints.

Every webhook route is scoped to the tenant named in the ``X-Tenant-ID``
header. Resolving and authenticating that tenant is the job of whatever
sits in front of this API.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status

from relay import __version__
from relay.models import DeliveryStatus, WebhookUpdate
from relay.service import RelayService

from .schemas import (
    DeliveryListResponse,
    DeliveryResponse,
    HealthResponse,
    TriggerEventRequest,
    TriggerEventResponse,
    WebhookCreateRequest,
    WebhookListResponse,
    WebhookResponse,
    WebhookSecretResponse,
    WebhookUpdateRequest,
)

router = APIRouter()

# Service instance (set by app lifespan)
_service: RelayService | None = None


def set_service(service: RelayService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> RelayService:
    """Dependency to get the RelayService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


async def get_tenant_id(
    x_tenant_id: Annotated[str, Header(min_length=1, max_length=64)],
) -> str:
    """Dependency resolving the tenant from the X-Tenant-ID header."""
    return x_tenant_id


ServiceDep = Annotated[RelayService, Depends(get_service)]
TenantDep = Annotated[str, Depends(get_tenant_id)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health, including whether the database engine is up."""
    connected = _service is not None and _service.storage.is_initialized
    return HealthResponse(
        status="healthy" if connected else "unhealthy",
        version=__version__,
        storage_connected=connected,
    )


@router.post(
    "/webhooks",
    response_model=WebhookSecretResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: WebhookCreateRequest,
    tenant_id: TenantDep,
    service: ServiceDep,
) -> WebhookSecretResponse:
    """Register a webhook.

    The response is the only place besides secret regeneration where the
    signing secret is returned.
    """
    webhook = await service.registry.create_webhook(
        tenant_id,
        str(request.url),
        request.events,
        description=request.description,
    )
    return WebhookSecretResponse.from_webhook(webhook)


@router.get("/webhooks", response_model=WebhookListResponse, tags=["webhooks"])
async def list_webhooks(tenant_id: TenantDep, service: ServiceDep) -> WebhookListResponse:
    """List the tenant's webhooks, newest first."""
    webhooks = await service.registry.get_webhooks(tenant_id)
    return WebhookListResponse(
        webhooks=[WebhookResponse.from_webhook(w) for w in webhooks],
        count=len(webhooks),
    )


@router.post("/webhooks/test", response_model=TriggerEventResponse, tags=["webhooks"])
async def trigger_test_event(
    request: TriggerEventRequest,
    tenant_id: TenantDep,
    service: ServiceDep,
) -> TriggerEventResponse:
    """Trigger an event by hand, delivering it to every subscribed webhook."""
    delivery_ids = await service.trigger_event(tenant_id, request.event, request.data)
    return TriggerEventResponse(event=request.event, delivery_ids=delivery_ids)


@router.get("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def get_webhook(webhook_id: str, tenant_id: TenantDep, service: ServiceDep) -> WebhookResponse:
    """Get a webhook. Suspension shows in both ``status`` and ``suspended``."""
    webhook = await service.registry.get_webhook_by_id(tenant_id, webhook_id)
    return WebhookResponse.from_webhook(webhook)


@router.patch("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def update_webhook(
    webhook_id: str,
    request: WebhookUpdateRequest,
    tenant_id: TenantDep,
    service: ServiceDep,
) -> WebhookResponse:
    """Update url, events, description or status of a webhook."""
    patch = WebhookUpdate.model_validate(request.model_dump(exclude_unset=True))
    webhook = await service.registry.update_webhook(tenant_id, webhook_id, patch)
    return WebhookResponse.from_webhook(webhook)


@router.delete(
    "/webhooks/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_webhook(webhook_id: str, tenant_id: TenantDep, service: ServiceDep) -> Response:
    """Delete a webhook and its delivery history."""
    await service.registry.delete_webhook(tenant_id, webhook_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/webhooks/{webhook_id}/regenerate-secret",
    response_model=WebhookSecretResponse,
    tags=["webhooks"],
)
async def regenerate_secret(
    webhook_id: str, tenant_id: TenantDep, service: ServiceDep
) -> WebhookSecretResponse:
    """Rotate the signing secret and return the new one."""
    webhook = await service.registry.regenerate_secret(tenant_id, webhook_id)
    return WebhookSecretResponse.from_webhook(webhook)


@router.post(
    "/webhooks/{webhook_id}/reactivate",
    response_model=WebhookResponse,
    tags=["webhooks"],
)
async def reactivate_webhook(
    webhook_id: str, tenant_id: TenantDep, service: ServiceDep
) -> WebhookResponse:
    """Reactivate a suspended webhook and reset its failure counter."""
    webhook = await service.registry.reactivate_webhook(tenant_id, webhook_id)
    return WebhookResponse.from_webhook(webhook)


@router.get(
    "/webhooks/{webhook_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["webhooks"],
)
async def list_deliveries(
    webhook_id: str,
    tenant_id: TenantDep,
    service: ServiceDep,
    limit: Annotated[int | None, Query(ge=1)] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
    delivery_status: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
) -> DeliveryListResponse:
    """Delivery history for a webhook, newest first."""
    if limit is None:
        limit = service.settings.delivery_history_default_limit
    deliveries, total = await service.registry.get_delivery_history(
        tenant_id, webhook_id, limit=limit, offset=offset, status=delivery_status
    )
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.from_delivery(d) for d in deliveries],
        total=total,
        limit=limit,
        offset=offset,
    )

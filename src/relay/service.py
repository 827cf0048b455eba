"""Relay service layer.

This module provides RelayService, which wires storage, the registry
and the delivery engine together from Settings.

Example:
    ```python
    from relay.service import RelayService

    async with RelayService.create() as relay:
        webhook = await relay.registry.create_webhook(
            "tnt_1", "https://example.com/hooks", ["invoice.paid"]
        )
        await relay.trigger_event("tnt_1", "invoice.paid", {"invoiceId": "X"})
    ```
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from relay.config import Settings
from relay.models import EventType, Webhook, utcnow
from relay.storage import RelayStorage
from relay.webhooks import (
    DeliveryAttemptExecutor,
    EventDispatcher,
    RetryScheduler,
    RetrySweeper,
    SignatureService,
    WebhookRegistry,
)


@dataclass
class RelayService:
    """High-level entry point for the webhook delivery engine.

    Attributes:
        storage: SQL storage for webhooks and deliveries.
        settings: Configuration settings.
        http_client: Optional shared client for delivery attempts.
        clock: Source of the current time for every component.
    """

    storage: RelayStorage
    settings: Settings
    http_client: httpx.AsyncClient | None = None
    clock: Callable[[], datetime] = utcnow

    signer: SignatureService = field(init=False, repr=False)
    scheduler: RetryScheduler = field(init=False, repr=False)
    executor: DeliveryAttemptExecutor = field(init=False, repr=False)
    dispatcher: EventDispatcher = field(init=False, repr=False)
    sweeper: RetrySweeper = field(init=False, repr=False)
    registry: WebhookRegistry = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Build the engine components from settings."""
        s = self.settings
        self.signer = SignatureService()
        self.scheduler = RetryScheduler(
            backoff=s.webhook_backoff_seconds,
            max_attempts=s.webhook_max_attempts,
            failure_threshold=s.webhook_suspend_failure_threshold,
        )
        self.executor = DeliveryAttemptExecutor(
            self.storage,
            signer=self.signer,
            scheduler=self.scheduler,
            timeout_seconds=s.webhook_timeout_seconds,
            response_body_limit=s.webhook_response_body_limit,
            client=self.http_client,
            clock=self.clock,
        )
        self.dispatcher = EventDispatcher(
            self.storage,
            self.executor,
            mode=s.dispatch_mode,
            max_concurrent=s.max_concurrent_deliveries,
            lease_seconds=s.claim_lease_seconds,
            clock=self.clock,
        )
        self.sweeper = RetrySweeper(
            self.storage,
            self.executor,
            interval_seconds=s.sweeper_interval_seconds,
            batch_size=s.sweeper_batch_size,
            lease_seconds=s.claim_lease_seconds,
            pending_grace_seconds=s.pending_grace_seconds,
            max_concurrent=s.max_concurrent_deliveries,
            clock=self.clock,
        )
        self.registry = WebhookRegistry(
            self.storage,
            history_default_limit=s.delivery_history_default_limit,
            history_max_limit=s.delivery_history_max_limit,
            clock=self.clock,
        )

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> RelayService:
        """Create a RelayService with default dependencies.

        Args:
            settings: Optional settings. Uses environment if None.
            http_client: Optional shared HTTP client for deliveries.
            clock: Source of the current time.

        Returns:
            Configured RelayService instance.
        """
        if settings is None:
            settings = Settings()

        return cls(
            storage=RelayStorage(url=settings.database_url, echo=settings.database_echo),
            settings=settings,
            http_client=http_client,
            clock=clock,
        )

    async def trigger_event(
        self,
        tenant_id: str,
        event: EventType | str,
        data: dict[str, Any] | None = None,
    ) -> list[str]:
        """Fan an event out to the tenant's subscribed webhooks."""
        return await self.dispatcher.trigger_event(tenant_id, event, data)

    def verify_signature(self, webhook: Webhook, payload: Any, signature: str) -> bool:
        """Verify a payload signature for a webhook.

        The previous secret is accepted while the rotation grace window
        (``secret_rotation_grace_seconds``) is open.
        """
        secrets = webhook.verification_secrets(
            self.clock(), self.settings.secret_rotation_grace_seconds
        )
        return self.signer.verify_any(payload, signature, secrets)

    async def initialize(self) -> None:
        """Initialize the service (engine, tables)."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Stop background work and release the database engine."""
        if self.sweeper.is_running:
            await self.sweeper.stop()
        await self.dispatcher.drain()
        await self.storage.close()

    async def __aenter__(self) -> RelayService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()


__all__ = ["RelayService"]

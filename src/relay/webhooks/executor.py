"""Single signed HTTP delivery attempt.

The executor posts one delivery to its webhook, records the outcome and
applies the retry policy. Subscriber failures never escape it: transport
and protocol errors become a scheduling decision stored on the delivery.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import httpx

from relay.exceptions import (
    ConfigurationError,
    DeliveryError,
    DeliveryProtocolError,
    DeliveryStateError,
    DeliveryTransportError,
    RelayError,
)
from relay.logging import delivery_context, get_logger
from relay.models import DEFAULT_RESPONSE_BODY_LIMIT, Delivery, Webhook, WebhookStatus, utcnow

from .retry import RetryScheduler
from .signature import SignatureService, canonical_json

if TYPE_CHECKING:
    from relay.storage import RelayStore

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# UTF-8 needs at most four bytes per character
_BYTES_PER_CHAR = 4

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-ID"

_COUNTER_FIELDS = (
    "status",
    "success_count",
    "failure_count",
    "last_success_at",
    "last_failure_at",
)


class DeliveryAttemptExecutor:
    """Performs delivery attempts against subscriber endpoints.

    Example:
        ```python
        executor = DeliveryAttemptExecutor(storage)
        delivery = await executor.attempt(webhook, delivery)
        print(delivery.status, delivery.response_status)
        ```
    """

    def __init__(
        self,
        storage: RelayStore,
        signer: SignatureService | None = None,
        scheduler: RetryScheduler | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        response_body_limit: int = DEFAULT_RESPONSE_BODY_LIMIT,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the executor.

        Args:
            storage: Webhook and delivery persistence.
            signer: Payload signer. Defaults to SignatureService().
            scheduler: Failure policy. Defaults to RetryScheduler().
            timeout_seconds: Bound on a single HTTP attempt.
            response_body_limit: Characters of response body kept.
            client: Shared HTTP client. A short-lived client is opened per
                attempt when omitted.
            clock: Source of the current time.
        """
        self._storage = storage
        self._signer = signer or SignatureService()
        self._scheduler = scheduler or RetryScheduler()
        self._timeout = timeout_seconds
        self._body_limit = response_body_limit
        self._client = client
        self._clock = clock

    @property
    def scheduler(self) -> RetryScheduler:
        return self._scheduler

    async def attempt(self, webhook: Webhook, delivery: Delivery) -> Delivery:
        """Make one attempt and persist its outcome.

        The caller must own the delivery (fresh from dispatch, or claimed
        by the sweeper). Storage errors propagate; subscriber errors do not.

        Returns:
            The updated delivery.
        """
        with delivery_context(webhook.id, delivery.id, delivery.event.value):
            if delivery.is_terminal:
                logger.info("Skipping terminal delivery", status=delivery.status.value)
                return delivery

            try:
                delivery.begin_attempt(self._clock(), self._scheduler.max_attempts)
            except DeliveryStateError as e:
                logger.warning("Delivery has no attempts left", error=e.message)
                delivery.mark_failed()
                delivery.error_message = e.message
                await self._storage.save_delivery(delivery)
                return delivery

            await self._storage.save_delivery(delivery)

            try:
                await self._send(webhook, delivery)
            except (DeliveryError, ConfigurationError) as e:
                await self._handle_failure(webhook, delivery, e)
            else:
                await self._handle_success(webhook, delivery)

            await self._storage.save_delivery(delivery)
            return delivery

    async def _send(self, webhook: Webhook, delivery: Delivery) -> None:
        """POST the delivery and record the response.

        The whole attempt, body included, is bounded by the timeout.

        Raises:
            ConfigurationError: The webhook has no usable secret.
            DeliveryTransportError: Network failure or timeout.
            DeliveryProtocolError: Non-2xx response.
        """
        body = canonical_json(delivery.payload)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: self._signer.sign(body, webhook.secret),
            EVENT_HEADER: delivery.event.value,
            DELIVERY_ID_HEADER: delivery.id,
        }

        try:
            async with asyncio.timeout(self._timeout):
                if self._client is not None:
                    response, text = await self._post(self._client, str(webhook.url), body, headers)
                else:
                    async with httpx.AsyncClient(timeout=self._timeout) as client:
                        response, text = await self._post(client, str(webhook.url), body, headers)
        except (TimeoutError, httpx.TimeoutException) as e:
            raise DeliveryTransportError(
                f"Request timed out after {self._timeout:g}s"
            ) from e
        except httpx.RequestError as e:
            raise DeliveryTransportError(
                f"Request failed: {str(e) or type(e).__name__}"
            ) from e

        delivery.record_response(response.status_code, text, self._body_limit)
        if not response.is_success:
            raise DeliveryProtocolError(response.status_code, response.reason_phrase)

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        body: bytes,
        headers: dict[str, str],
    ) -> tuple[httpx.Response, str]:
        """Stream the response, reading at most a few bytes per kept character."""
        cap = self._body_limit * _BYTES_PER_CHAR
        async with client.stream(
            "POST", url, content=body, headers=headers, timeout=self._timeout
        ) as response:
            raw = bytearray()
            async for chunk in response.aiter_bytes():
                raw += chunk
                if len(raw) >= cap:
                    break
        text = bytes(raw[:cap]).decode(response.charset_encoding or "utf-8", errors="replace")
        return response, text

    async def _handle_success(self, webhook: Webhook, delivery: Delivery) -> None:
        now = self._clock()
        delivery.mark_success(now)
        fresh = await self._storage.record_success(webhook.id, now)
        if fresh is not None:
            _sync_counters(webhook, fresh)
        logger.info(
            "Webhook delivered",
            attempt=delivery.attempts,
            status_code=delivery.response_status,
        )

    async def _handle_failure(
        self, webhook: Webhook, delivery: Delivery, error: RelayError
    ) -> None:
        now = self._clock()
        decision = self._scheduler.handle_failure(webhook, delivery, now)
        delivery.error_message = error.message

        fresh = await self._storage.record_failure(webhook.id, now)
        if fresh is not None:
            if self._scheduler.should_suspend(fresh) and await self._storage.suspend_webhook(
                webhook.id, self._scheduler.failure_threshold
            ):
                fresh.status = WebhookStatus.SUSPENDED
                logger.warning(
                    "Webhook suspended after repeated failures",
                    failure_count=fresh.failure_count,
                    threshold=self._scheduler.failure_threshold,
                )
            _sync_counters(webhook, fresh)

        if decision.retry:
            logger.info(
                "Webhook delivery failed, retry scheduled",
                attempt=delivery.attempts,
                status_code=delivery.response_status,
                error=error.message,
                next_retry_at=delivery.next_retry_at.isoformat() if delivery.next_retry_at else None,
            )
        else:
            logger.warning(
                "Webhook delivery failed permanently",
                attempt=delivery.attempts,
                status_code=delivery.response_status,
                error=error.message,
            )


def _sync_counters(webhook: Webhook, fresh: Webhook) -> None:
    """Copy storage-side counters and status onto the in-memory webhook."""
    for name in _COUNTER_FIELDS:
        setattr(webhook, name, getattr(fresh, name))


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "DELIVERY_ID_HEADER",
    "DeliveryAttemptExecutor",
    "EVENT_HEADER",
    "SIGNATURE_HEADER",
]

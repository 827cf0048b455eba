"""Webhook delivery engine for Relay.

Provides HMAC-signed webhook delivery with fixed-schedule backoff retry
and failure-driven suspension.

Example:
    ```python
    from relay.webhooks import EventDispatcher, trigger_event

    # Using dispatcher directly
    dispatcher = EventDispatcher(storage, DeliveryAttemptExecutor(storage))
    await dispatcher.trigger_event("tnt_1", "invoice.paid", {"invoiceId": "X"})

    # Using convenience function
    await trigger_event(storage, "tnt_1", "customer.created", {"customerId": "C"})
    ```
"""

from .dispatcher import EventDispatcher, coerce_event, trigger_event
from .executor import DeliveryAttemptExecutor
from .registry import WebhookRegistry
from .retry import BACKOFF_SECONDS, MAX_RETRY_ATTEMPTS, RetryDecision, RetryScheduler
from .signature import (
    SignatureService,
    canonical_json,
    compute_signature,
    generate_secret,
    verify_signature,
)
from .sweeper import RetrySweeper

__all__ = [
    "BACKOFF_SECONDS",
    "DeliveryAttemptExecutor",
    "EventDispatcher",
    "MAX_RETRY_ATTEMPTS",
    "RetryDecision",
    "RetryScheduler",
    "RetrySweeper",
    "SignatureService",
    "WebhookRegistry",
    "canonical_json",
    "coerce_event",
    "compute_signature",
    "generate_secret",
    "trigger_event",
    "verify_signature",
]

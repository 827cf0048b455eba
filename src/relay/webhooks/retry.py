"""Backoff and suspension policy for failed deliveries.

RetryScheduler decides what happens after a failed attempt. It does no
I/O: the executor persists its decisions, with the failure counter
incremented atomically in storage.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from relay.models import Delivery, Webhook, WebhookStatus

# 1m, 5m, 15m, 1h, 2h
BACKOFF_SECONDS: tuple[int, ...] = (60, 300, 900, 3600, 7200)
MAX_RETRY_ATTEMPTS = 5
SUSPEND_FAILURE_THRESHOLD = 10


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a failed attempt.

    Attributes:
        retry: True if another attempt is scheduled.
        next_retry_at: When it may run; None when the delivery failed for good.
        suspend: True if the webhook crossed the suspension threshold.
    """

    retry: bool
    next_retry_at: datetime | None
    suspend: bool


class RetryScheduler:
    """Exponential backoff with a fixed schedule and failure-driven suspension.

    Example:
        ```python
        scheduler = RetryScheduler()
        decision = scheduler.handle_failure(webhook, delivery, now)
        if decision.retry:
            print("next attempt at", delivery.next_retry_at)
        ```
    """

    def __init__(
        self,
        backoff: Sequence[int] = BACKOFF_SECONDS,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        failure_threshold: int = SUSPEND_FAILURE_THRESHOLD,
    ) -> None:
        if not backoff:
            raise ValueError("backoff schedule must not be empty")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.backoff = tuple(backoff)
        self.max_attempts = max_attempts
        self.failure_threshold = failure_threshold

    def backoff_for(self, attempts: int) -> timedelta:
        """Delay after the given (1-indexed) attempt.

        Attempts beyond the schedule reuse its last entry.
        """
        index = min(max(attempts, 1) - 1, len(self.backoff) - 1)
        return timedelta(seconds=self.backoff[index])

    def should_suspend(self, webhook: Webhook) -> bool:
        """Whether the webhook's counters call for suspension."""
        return (
            webhook.status == WebhookStatus.ACTIVE
            and webhook.failure_count > self.failure_threshold
            and webhook.success_count == 0
        )

    def handle_failure(self, webhook: Webhook, delivery: Delivery, now: datetime) -> RetryDecision:
        """Apply the failure policy to in-memory models.

        Increments the webhook's failure counter, then either schedules the
        next attempt or marks the delivery FAILED, and suspends the webhook
        when it has failed more than the threshold without ever succeeding.
        """
        webhook.failure_count += 1
        webhook.last_failure_at = now

        if delivery.attempts < self.max_attempts:
            next_retry_at = now + self.backoff_for(delivery.attempts)
            delivery.mark_retrying(next_retry_at)
        else:
            next_retry_at = None
            delivery.mark_failed()

        suspend = self.should_suspend(webhook)
        if suspend:
            webhook.status = WebhookStatus.SUSPENDED

        return RetryDecision(
            retry=next_retry_at is not None,
            next_retry_at=next_retry_at,
            suspend=suspend,
        )


__all__ = [
    "BACKOFF_SECONDS",
    "MAX_RETRY_ATTEMPTS",
    "SUSPEND_FAILURE_THRESHOLD",
    "RetryDecision",
    "RetryScheduler",
]

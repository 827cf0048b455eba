"""Unit tests for the delivery attempt executor."""

from __future__ import annotations

import asyncio
import json
import time
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from relay.models import Delivery, DeliveryStatus, EventType, WebhookEnvelope, WebhookStatus
from relay.webhooks.executor import (
    DELIVERY_ID_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    DeliveryAttemptExecutor,
)
from relay.webhooks.retry import RetryScheduler
from relay.webhooks.signature import canonical_json, verify_signature


@pytest.fixture
def webhook(make_webhook):
    return make_webhook(id="whk_test123")


@pytest.fixture
def delivery(clock, webhook) -> Delivery:
    envelope = WebhookEnvelope(
        event=EventType.INVOICE_PAID,
        timestamp=clock(),
        data={"invoiceId": "X"},
        tenant_id=webhook.tenant_id,
    )
    return Delivery.for_envelope(webhook.id, envelope, created_at=clock())


@pytest.fixture
def mock_storage(webhook) -> AsyncMock:
    """Storage double keeping its own copy of the webhook counters."""
    storage = AsyncMock()
    storage.stored = webhook.model_copy()
    storage.save_delivery = AsyncMock(return_value=True)
    storage.suspend_webhook = AsyncMock(return_value=False)

    async def record_success(webhook_id, at):
        storage.stored.success_count += 1
        storage.stored.last_success_at = at
        return storage.stored.model_copy()

    async def record_failure(webhook_id, at):
        storage.stored.failure_count += 1
        storage.stored.last_failure_at = at
        return storage.stored.model_copy()

    storage.record_success = AsyncMock(side_effect=record_success)
    storage.record_failure = AsyncMock(side_effect=record_failure)
    return storage


def _executor(storage, client, clock, **kwargs) -> DeliveryAttemptExecutor:
    return DeliveryAttemptExecutor(storage, client=client, clock=clock, **kwargs)


class TestSuccessfulAttempt:
    """Tests for 2xx responses."""

    @pytest.mark.asyncio
    async def test_marks_success(self, mock_storage, http_client, clock, webhook, delivery):
        result = await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        assert result.status == DeliveryStatus.SUCCESS
        assert result.attempts == 1
        assert result.response_status == 200
        assert result.response_body == "ok"
        assert result.delivered_at == clock()
        assert webhook.success_count == 1
        assert webhook.last_success_at == clock()
        mock_storage.record_success.assert_awaited_once_with(webhook.id, clock())

    @pytest.mark.asyncio
    async def test_persists_in_flight_then_outcome(
        self, mock_storage, http_client, clock, webhook, delivery
    ):
        """The delivery is saved before the request and after it."""
        statuses = []
        mock_storage.save_delivery.side_effect = lambda d: statuses.append(d.status) or True

        await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        assert statuses == [DeliveryStatus.RETRYING, DeliveryStatus.SUCCESS]

    @pytest.mark.parametrize("status_code", [200, 201, 202, 204, 299])
    @pytest.mark.asyncio
    async def test_any_2xx_is_success(
        self, mock_storage, subscriber, clock, webhook, delivery, status_code
    ):
        subscriber.status_codes = [status_code]
        async with subscriber.client() as client:
            result = await _executor(mock_storage, client, clock).attempt(webhook, delivery)
        assert result.status == DeliveryStatus.SUCCESS


class TestWireFormat:
    """Tests for the outbound HTTP request."""

    @pytest.mark.asyncio
    async def test_headers_and_body(
        self, mock_storage, http_client, subscriber, clock, webhook, delivery
    ):
        await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        request = subscriber.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://subscriber.example.com/hooks"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers[EVENT_HEADER] == "invoice.paid"
        assert request.headers[DELIVERY_ID_HEADER] == delivery.id
        assert request.content == canonical_json(delivery.payload)
        assert json.loads(request.content) == {
            "event": "invoice.paid",
            "timestamp": "2024-01-15T12:00:00Z",
            "data": {"invoiceId": "X"},
            "tenantId": "tnt_1",
        }

    @pytest.mark.asyncio
    async def test_signature_verifies_against_raw_body(
        self, mock_storage, http_client, subscriber, clock, webhook, delivery
    ):
        await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        request = subscriber.requests[0]
        assert verify_signature(request.content, request.headers[SIGNATURE_HEADER], webhook.secret)

    @pytest.mark.asyncio
    async def test_payload_unchanged_across_attempts(
        self, mock_storage, subscriber, clock, webhook, delivery
    ):
        subscriber.status_codes = [500, 200]
        async with subscriber.client() as client:
            executor = _executor(mock_storage, client, clock)
            await executor.attempt(webhook, delivery)
            clock.advance(60)
            await executor.attempt(webhook, delivery)

        first, second = subscriber.requests
        assert first.content == second.content
        assert first.headers[SIGNATURE_HEADER] == second.headers[SIGNATURE_HEADER]


class TestFailedAttempt:
    """Tests for non-2xx responses and transport failures."""

    @pytest.mark.parametrize("status_code", [400, 404, 410, 500, 502, 503])
    @pytest.mark.asyncio
    async def test_non_2xx_schedules_retry(
        self, mock_storage, subscriber, clock, webhook, delivery, status_code
    ):
        subscriber.status_codes = [status_code]
        async with subscriber.client() as client:
            result = await _executor(mock_storage, client, clock).attempt(webhook, delivery)

        assert result.status == DeliveryStatus.RETRYING
        assert result.response_status == status_code
        assert result.error_message.startswith(f"HTTP {status_code}")
        assert result.next_retry_at == clock() + timedelta(seconds=60)
        assert webhook.failure_count == 1

    @pytest.mark.asyncio
    async def test_response_body_truncated(
        self, mock_storage, subscriber, clock, webhook, delivery
    ):
        subscriber.status_codes = [500]
        subscriber.body = "e" * 4000
        async with subscriber.client() as client:
            result = await _executor(mock_storage, client, clock).attempt(webhook, delivery)
        assert len(result.response_body) == 1000

    @pytest.mark.asyncio
    async def test_connection_error_is_captured(
        self, mock_storage, http_client, subscriber, clock, webhook, delivery
    ):
        subscriber.error = httpx.ConnectError("connection refused")

        result = await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        assert result.status == DeliveryStatus.RETRYING
        assert result.response_status is None
        assert "connection refused" in result.error_message
        mock_storage.record_failure.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout_is_captured(
        self, mock_storage, http_client, subscriber, clock, webhook, delivery
    ):
        subscriber.error = httpx.ReadTimeout("timed out")

        result = await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        assert result.status == DeliveryStatus.RETRYING
        assert result.error_message == "Request timed out after 10s"

    @pytest.mark.asyncio
    async def test_slow_body_bounded_by_total_timeout(
        self, mock_storage, clock, webhook, delivery
    ):
        """A response trickled byte by byte still ends the attempt on time."""

        async def trickle():
            for _ in range(8):
                await asyncio.sleep(0.1)
                yield b"x"

        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=trickle()))
        async with httpx.AsyncClient(transport=transport) as client:
            executor = _executor(mock_storage, client, clock, timeout_seconds=0.25)
            started = time.monotonic()
            result = await executor.attempt(webhook, delivery)
            elapsed = time.monotonic() - started

        assert elapsed < 0.6
        assert result.status == DeliveryStatus.RETRYING
        assert result.error_message == "Request timed out after 0.25s"
        mock_storage.record_success.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_large_body_read_is_capped(self, mock_storage, clock, webhook, delivery):
        """Only a bounded prefix of a huge response body is read."""
        chunks_read = 0

        async def endless():
            nonlocal chunks_read
            while True:
                chunks_read += 1
                yield b"y" * 1024

        transport = httpx.MockTransport(lambda request: httpx.Response(500, content=endless()))
        async with httpx.AsyncClient(transport=transport) as client:
            result = await _executor(mock_storage, client, clock).attempt(webhook, delivery)

        assert result.status == DeliveryStatus.RETRYING
        assert result.response_status == 500
        assert result.response_body == "y" * 1000
        assert chunks_read <= 4

    @pytest.mark.asyncio
    async def test_missing_secret_is_a_failed_attempt(
        self, mock_storage, http_client, subscriber, clock, webhook, delivery
    ):
        webhook.secret = ""

        result = await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        assert subscriber.calls == 0
        assert result.status == DeliveryStatus.RETRYING
        assert "secret" in result.error_message

    @pytest.mark.asyncio
    async def test_last_attempt_fails_delivery(
        self, mock_storage, subscriber, clock, webhook, delivery
    ):
        subscriber.status_codes = [500]
        delivery.attempts = 4
        delivery.status = DeliveryStatus.RETRYING
        async with subscriber.client() as client:
            result = await _executor(mock_storage, client, clock).attempt(webhook, delivery)

        assert result.attempts == 5
        assert result.status == DeliveryStatus.FAILED
        assert result.next_retry_at is None


class TestSuspension:
    """Tests for suspension after repeated failures."""

    @pytest.mark.asyncio
    async def test_suspends_when_stored_counters_cross_threshold(
        self, mock_storage, subscriber, clock, webhook, delivery
    ):
        subscriber.status_codes = [500]
        webhook.failure_count = 10
        mock_storage.stored.failure_count = 10
        mock_storage.suspend_webhook.return_value = True
        async with subscriber.client() as client:
            await _executor(mock_storage, client, clock).attempt(webhook, delivery)

        mock_storage.suspend_webhook.assert_awaited_once_with(webhook.id, 10)
        assert webhook.status == WebhookStatus.SUSPENDED
        assert webhook.failure_count == 11

    @pytest.mark.asyncio
    async def test_no_suspension_below_threshold(
        self, mock_storage, subscriber, clock, webhook, delivery
    ):
        subscriber.status_codes = [500]
        async with subscriber.client() as client:
            await _executor(mock_storage, client, clock).attempt(webhook, delivery)

        mock_storage.suspend_webhook.assert_not_awaited()
        assert webhook.status == WebhookStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_concurrent_success_wins(
        self, mock_storage, subscriber, clock, webhook, delivery
    ):
        """Storage said no (a success landed meanwhile): status stays ACTIVE."""
        subscriber.status_codes = [500]
        webhook.failure_count = 10
        mock_storage.stored.failure_count = 10
        mock_storage.suspend_webhook.return_value = False
        async with subscriber.client() as client:
            await _executor(mock_storage, client, clock).attempt(webhook, delivery)

        assert webhook.status == WebhookStatus.ACTIVE


class TestGuards:
    """Tests for attempts that must not happen."""

    @pytest.mark.asyncio
    async def test_terminal_delivery_skipped(
        self, mock_storage, http_client, subscriber, clock, webhook, delivery
    ):
        delivery.begin_attempt(clock(), 5).mark_success(clock())

        result = await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        assert result.attempts == 1
        assert subscriber.calls == 0
        mock_storage.save_delivery.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_delivery_failed_without_request(
        self, mock_storage, http_client, subscriber, clock, webhook, delivery
    ):
        delivery.attempts = 5
        delivery.status = DeliveryStatus.RETRYING

        result = await _executor(mock_storage, http_client, clock).attempt(webhook, delivery)

        assert subscriber.calls == 0
        assert result.attempts == 5
        assert result.status == DeliveryStatus.FAILED

    @pytest.mark.asyncio
    async def test_custom_scheduler_maximum(
        self, mock_storage, subscriber, clock, webhook, delivery
    ):
        subscriber.status_codes = [500]
        scheduler = RetryScheduler(max_attempts=1)
        async with subscriber.client() as client:
            result = await _executor(
                mock_storage, client, clock, scheduler=scheduler
            ).attempt(webhook, delivery)

        assert result.status == DeliveryStatus.FAILED


class TestDefaultClient:
    """Without an injected client a short-lived one is used per attempt."""

    @pytest.mark.asyncio
    async def test_opens_client_with_timeout(
        self, mock_storage, clock, webhook, delivery, monkeypatch
    ):
        created = []
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        real_client = httpx.AsyncClient

        def factory(**kwargs):
            created.append(kwargs)
            return real_client(transport=transport, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", factory)

        executor = DeliveryAttemptExecutor(mock_storage, timeout_seconds=3.5, clock=clock)
        result = await executor.attempt(webhook, delivery)

        assert result.status == DeliveryStatus.SUCCESS
        assert created == [{"timeout": 3.5}]

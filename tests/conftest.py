"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from relay.models import EventType, Webhook
from relay.storage import RelayStorage

T0 = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Mutable clock injected wherever components read the time."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class Subscriber:
    """Fake subscriber endpoint backed by httpx.MockTransport.

    Answers with ``status_codes`` in order (the last one repeats) unless
    ``host_status_codes`` pins a status for the request's host, and
    records every request together with the fake time it arrived. While
    ``hold`` is set to an unset event, responses wait for it.
    """

    def __init__(
        self,
        clock: FakeClock,
        status_codes: list[int] | None = None,
        body: str = "ok",
    ) -> None:
        self.clock = clock
        self.status_codes = status_codes or [200]
        self.host_status_codes: dict[str, int] = {}
        self.body = body
        self.requests: list[httpx.Request] = []
        self.times: list[datetime] = []
        self.error: Exception | None = None
        self.hold: asyncio.Event | None = None
        self.received = asyncio.Event()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.times.append(self.clock())
        self.received.set()
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error
        if request.url.host in self.host_status_codes:
            return httpx.Response(self.host_status_codes[request.url.host], text=self.body)
        index = min(len(self.requests) - 1, len(self.status_codes) - 1)
        return httpx.Response(self.status_codes[index], text=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def clock() -> FakeClock:
    """A fake clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def subscriber(clock: FakeClock) -> Subscriber:
    """A subscriber that answers 200 unless reconfigured."""
    return Subscriber(clock)


@pytest_asyncio.fixture
async def http_client(subscriber: Subscriber) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client routed to the fake subscriber."""
    async with subscriber.client() as client:
        yield client


@pytest_asyncio.fixture
async def storage(tmp_path: Path) -> AsyncIterator[RelayStorage]:
    """RelayStorage on a temporary SQLite database."""
    store = RelayStorage(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def make_webhook(clock: FakeClock) -> Callable[..., Webhook]:
    """Factory for Webhook models with sensible defaults."""

    def _make(**overrides: Any) -> Webhook:
        values: dict[str, Any] = {
            "tenant_id": "tnt_1",
            "url": "https://subscriber.example.com/hooks",
            "events": [EventType.INVOICE_PAID],
            "secret": "a" * 64,
            "created_at": clock(),
            "updated_at": clock(),
        }
        values.update(overrides)
        return Webhook(**values)

    return _make

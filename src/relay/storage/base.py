"""Base storage class and helpers.

Contains engine lifecycle, schema creation, and row/model conversion.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Row
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from relay.config import settings
from relay.models import Delivery, Webhook

from .tables import metadata


class StorageBase:
    """Base class for Relay storage.

    Provides:
    - Async engine initialization and disposal
    - Table creation
    - Row <-> model conversion
    """

    def __init__(self, url: str | None = None, echo: bool | None = None) -> None:
        """Initialize storage.

        Args:
            url: SQLAlchemy async URL. Defaults to settings.database_url.
            echo: Log SQL statements. Defaults to settings.database_echo.
        """
        self._url = url or settings.database_url
        self._echo = settings.database_echo if echo is None else echo
        self._engine: AsyncEngine | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the database engine, raising if not initialized."""
        if self._engine is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._engine

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    async def initialize(self) -> None:
        """Create the engine and ensure tables exist."""
        options: dict[str, Any] = {"echo": self._echo}
        if not self._url.startswith("sqlite"):
            options["pool_pre_ping"] = True
        self._engine = create_async_engine(self._url, **options)
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    async def __aenter__(self) -> StorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @staticmethod
    def _webhook_to_row(webhook: Webhook) -> dict[str, Any]:
        row = webhook.model_dump()
        row["url"] = str(webhook.url)
        row["events"] = [event.value for event in webhook.events]
        row["status"] = webhook.status.value
        return row

    @staticmethod
    def _row_to_webhook(row: Row[Any]) -> Webhook:
        return Webhook.model_validate(dict(row._mapping))

    @staticmethod
    def _delivery_to_row(delivery: Delivery) -> dict[str, Any]:
        row = delivery.model_dump()
        row["event"] = delivery.event.value
        row["status"] = delivery.status.value
        return row

    @staticmethod
    def _row_to_delivery(row: Row[Any]) -> Delivery:
        return Delivery.model_validate(dict(row._mapping))

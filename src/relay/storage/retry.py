"""Retry utilities for storage operations.

Transient database errors (dropped connections, locked SQLite files,
failover) are retried with exponential backoff. Anything still failing
afterwards, and every non-transient SQLAlchemy error, surfaces as
StorageError.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from relay.exceptions import StorageError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def is_transient_error(exc: BaseException) -> bool:
    """Whether a database error is worth retrying."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context."""
    logger.warning(
        "Retrying database operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception(is_transient_error),
    before_sleep=_log_retry,
    reraise=True,
)


def _translate_errors(
    fn: Callable[P, Awaitable[T]], call: Callable[P, Awaitable[T]]
) -> Callable[P, Awaitable[T]]:
    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await call(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("Database operation failed", extra={"fn_name": fn.__name__})
            raise StorageError(f"{fn.__name__} failed: {e}") from e

    return wrapper


def storage_operation(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Retry transient failures and translate database errors to StorageError."""
    return _translate_errors(fn, db_retry(fn))


def storage_operation_once(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Translate database errors to StorageError without retrying.

    For non-idempotent writes: a connection lost after COMMIT would make a
    retry apply the change twice.
    """
    return _translate_errors(fn, fn)

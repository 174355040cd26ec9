"""Utility helpers for the reminder scheduler."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from .errors import TransientStoreError

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError, TransientStoreError)


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def call_with_retries(
    operation: Callable[[], T],
    *,
    attempts: int,
    backoff_seconds: float,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` retrying transient store failures with exponential backoff.

    Raises :class:`TransientStoreError` once ``attempts`` are exhausted.
    """

    last_error: Exception | None = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            return operation()
        except TRANSIENT_ERRORS as exc:
            last_error = exc
            if attempt >= attempts:
                break
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "Transient store error during %s (attempt %d/%d), retrying in %.2fs: %s",
                description,
                attempt,
                attempts,
                delay,
                exc,
            )
            if delay > 0:
                sleep(delay)
    raise TransientStoreError(
        f"{description} failed after {attempts} attempts"
    ) from last_error

"""
Bounded retry with exponential backoff for remote calls.

`with_retry` retries transient failures within a single call (seconds
apart); the offline queue retries across drains using the same error
classification but its own attempt bookkeeping.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from caresync.config import Settings
from caresync.notifications import Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MESSAGE_MARKERS = ("network", "timeout", "connection", "unavailable")
RETRYABLE_CODES = ("unavailable", "deadline-exceeded", "resource-exhausted")
FATAL_CODES = ("permission-denied", "unauthenticated", "not-found", "invalid-argument")
FATAL_STATUSES = {400, 401, 403, 404}


def _error_status(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    if status is None:
        status = getattr(error, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_retryable_error(error: BaseException) -> bool:
    """
    Classify a failure as transient (retry) or permanent (give up).

    Unknown errors are treated as transient.
    """
    message = str(error).lower()
    code = str(getattr(error, "code", "") or "").lower()

    if any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS):
        return True
    if any(marker in code for marker in RETRYABLE_CODES):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    status = _error_status(error)
    if status is not None and (status >= 500 or status == 429):
        return True

    if any(marker in code for marker in FATAL_CODES):
        return False
    if status in FATAL_STATUSES:
        return False

    return True


@dataclass
class RetryOptions:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    notify_user: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryOptions":
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            backoff_factor=settings.retry_backoff_factor,
        )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    on_retry: Optional[Callable[[int, BaseException], Any]] = None,
    notify_user: bool = True,
    notifier: Optional[Notifier] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `operation()` up to `max_attempts` times.

    Fatal errors are re-raised immediately. After the last failed attempt the
    last error is re-raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delay = min(initial_delay, max_delay)
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as error:
            if attempt == max_attempts:
                logger.warning(
                    "Operation failed after %d attempts: %s", max_attempts, error
                )
                if notify_user and notifier is not None:
                    notifier.error(
                        f"Operation failed after {max_attempts} attempts. "
                        "Please try again later."
                    )
                raise

            if not is_retryable_error(error):
                logger.info("Not retrying after fatal error: %s", error)
                raise

            if on_retry is not None:
                on_retry(attempt, error)

            if notify_user and notifier is not None and attempt == 1:
                notifier.info(
                    f"Retrying... ({attempt}/{max_attempts})", key="retry"
                )

            logger.debug(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                max_attempts,
                error,
                delay,
            )
            await sleep(delay)
            delay = min(delay * backoff_factor, max_delay)

    raise AssertionError("unreachable")


def create_retryable_operation(
    operation: Callable[[], Awaitable[T]], **options: Any
) -> Callable[[], Awaitable[T]]:
    """Bind `operation` and retry options into a zero-argument coroutine function."""

    async def _run() -> T:
        return await with_retry(operation, **options)

    return _run

"""Retry utilities for transient issue tracker failures.

Tracker requests fail transiently (connection resets, gateway errors, rate
limiting). ``async_retry`` retries such failures with exponential backoff;
client errors such as 404 or 400 propagate immediately.

Backoff Formula:
    delay = backoff_factor ** attempt_number
    For backoff_factor=2.0: 2s, 4s, 8s, ...
"""

import asyncio
import functools
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})


def is_transient(error: BaseException) -> bool:
    """Whether a tracker request failure is worth retrying."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    return False


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    retry_if: Callable[[BaseException], bool] = is_transient,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of calls before giving up
        backoff_factor: Base for the exponential delay between attempts
        retry_if: Predicate selecting which exceptions are retried; others
            propagate immediately

    Raises:
        The last exception once attempts are exhausted.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not retry_if(e):
                        raise
                    if attempt == max_attempts:
                        log.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise

                    delay = backoff_factor**attempt
                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry logic error")

        return wrapper

    return decorator

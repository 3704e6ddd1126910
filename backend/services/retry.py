"""Retry policy for outbound API calls.

All retry counts live here:

- RetryPolicy / call_with_retry: backoff on server-class failures (5xx,
  network). Client errors (4xx) are never retried.
- AUTH_RETRY_LIMIT: how many times a provider call is repeated after a 401
  and a forced token refresh (see AuthorizedClient).

The rate limiter never retries; it only delays.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_RETRY_LIMIT = 1


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.base_delay * attempt


DEFAULT_RETRY_POLICY = RetryPolicy()


def error_status(error: BaseException) -> Optional[int]:
    """Best-effort HTTP status of an error, None for network-level failures."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("upstream_status", "status_code", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    return None


def is_retryable(error: BaseException) -> bool:
    status = error_status(error)
    if status is None:
        return True
    return status >= 500


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation``, retrying server-class failures with growing delays.

    Raises the last error once attempts are exhausted, or the first
    non-retryable error immediately.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e) or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt, e)
            await sleep(delay)
            attempt += 1

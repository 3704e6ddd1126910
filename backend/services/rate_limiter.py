"""Sliding window rate limiter with FIFO queueing for outbound API calls.

Each limiter keeps a deque of request timestamps for one API category
("api", "search", "ai", ...). When the window is full, excess calls are either
rejected with RateLimitExceeded or parked in a FIFO queue that a single
background drain task services as capacity frees up.

Limiters are owned by a RateLimiterRegistry that the application constructs
and injects; there is no module-level limiter state.
"""

import asyncio
import functools
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Mapping, Optional, Set, TypeVar

from backend.errors import RateLimitExceeded, RateLimitReset

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Extra delay added after the oldest timestamp leaves the window.
QUEUE_SAFETY_MARGIN = 0.01


@dataclass(frozen=True)
class RateLimitConfig:
    """Quota for one API category."""

    max_requests: int
    window_seconds: float
    queue_enabled: bool = True

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {self.max_requests}")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {self.window_seconds}")


@dataclass(frozen=True)
class RateLimitStatus:
    """Point-in-time view of a limiter."""

    requests_in_window: int
    max_requests: int
    queue_length: int
    can_make_request: bool


@dataclass
class _QueuedRequest:
    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float


class QueuedRateLimiter:
    """Sliding window limiter that queues excess calls instead of dropping them.

    Not thread-safe: all calls must come from one event loop.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._name = name
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._queue: Deque[_QueuedRequest] = deque()
        self._processing = False
        self._drain_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """Run ``operation`` under the limit.

        Args:
            operation: Zero-arg callable returning an awaitable.
            timeout: Maximum seconds to wait in the queue and run. Only applies
                to queued calls; on expiry the call is withdrawn and
                asyncio.TimeoutError is raised.

        Raises:
            RateLimitExceeded: Window is full and queueing is disabled.
        """
        # Calls arriving while others are queued wait their turn.
        if not self._queue and self._has_capacity():
            self._record()
            return await operation()

        if not self._config.queue_enabled:
            retry_after = self._retry_after()
            logger.warning(
                "Rate limit exceeded for %s (%d/%d), retry after %.2fs",
                self._name,
                len(self._timestamps),
                self._config.max_requests,
                retry_after,
            )
            raise RateLimitExceeded(retry_after=retry_after)

        future = asyncio.get_running_loop().create_future()
        request = _QueuedRequest(operation=operation, future=future, enqueued_at=self._clock())
        self._queue.append(request)
        logger.debug("Queued request for %s (queue length %d)", self._name, len(self._queue))
        self._ensure_draining()

        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            self._withdraw(request)
            raise

    def get_status(self) -> RateLimitStatus:
        """Report window occupancy. Only prunes expired timestamps."""
        has_capacity = self._has_capacity()
        return RateLimitStatus(
            requests_in_window=len(self._timestamps),
            max_requests=self._config.max_requests,
            queue_length=len(self._queue),
            can_make_request=has_capacity and not self._queue,
        )

    def reset(self) -> None:
        """Clear window history and fail every queued call with RateLimitReset.

        An operation already dispatched by the drain runs to completion and its
        caller gets the real result.
        """
        self._timestamps.clear()
        pending = list(self._queue)
        self._queue.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(RateLimitReset())

        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None
        self._processing = False
        if pending:
            logger.info("Reset %s limiter, dropped %d queued requests", self._name, len(pending))

    # ------------------------------------------------------------------
    # Window bookkeeping
    # ------------------------------------------------------------------

    def _prune(self, now: float) -> None:
        cutoff = now - self._config.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def _has_capacity(self) -> bool:
        self._prune(self._clock())
        return len(self._timestamps) < self._config.max_requests

    def _record(self) -> None:
        self._timestamps.append(self._clock())

    def _retry_after(self) -> float:
        """Seconds until the oldest timestamp leaves the window."""
        if not self._timestamps:
            return 0.0
        oldest = self._timestamps[0]
        return max(0.0, self._config.window_seconds - (self._clock() - oldest))

    # ------------------------------------------------------------------
    # Queue draining
    # ------------------------------------------------------------------

    def _withdraw(self, request: _QueuedRequest) -> None:
        try:
            self._queue.remove(request)
        except ValueError:
            pass  # already dispatched or dropped by reset()

    def _ensure_draining(self) -> None:
        if self._processing:
            return
        self._processing = True
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        """Service queued calls one at a time, in arrival order."""
        try:
            while self._queue:
                if not self._has_capacity():
                    wait = self._retry_after()
                    logger.debug("%s limiter full, waiting %.3fs", self._name, wait)
                    await self._sleep(wait + QUEUE_SAFETY_MARGIN)
                    continue

                request = self._queue.popleft()
                if request.future.done():
                    continue

                self._record()
                # Runs in its own task so cancelling the drain never reaches it.
                task = asyncio.get_running_loop().create_task(_invoke(request.operation))
                self._in_flight.add(task)
                task.add_done_callback(functools.partial(self._settle, request.future))
                await asyncio.wait([task])
        finally:
            if self._drain_task is asyncio.current_task():
                self._processing = False
                self._drain_task = None

    def _settle(self, future: asyncio.Future, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            # The operation cancelled itself; only its own caller sees it.
            if not future.done():
                future.cancel()
            return
        error = task.exception()
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(task.result())


async def _invoke(operation: Callable[[], Awaitable[T]]) -> T:
    return await operation()


def default_rate_limit_configs(settings: Any) -> Dict[str, RateLimitConfig]:
    """Per-category quotas used by the CRM."""
    return {
        "api": RateLimitConfig(max_requests=settings.rate_limit_api_per_minute, window_seconds=60),
        "search": RateLimitConfig(max_requests=settings.rate_limit_search_per_minute, window_seconds=60),
        "upload": RateLimitConfig(max_requests=settings.rate_limit_upload_per_minute, window_seconds=60),
        "ai": RateLimitConfig(max_requests=settings.rate_limit_ai_per_minute, window_seconds=60),
        "email": RateLimitConfig(max_requests=settings.rate_limit_email_per_hour, window_seconds=3600),
        "sms": RateLimitConfig(max_requests=settings.rate_limit_sms_per_minute, window_seconds=60),
    }


class RateLimiterRegistry:
    """Named collection of limiters, one per API category."""

    def __init__(self, limiters: Optional[Mapping[str, QueuedRateLimiter]] = None):
        self._limiters: Dict[str, QueuedRateLimiter] = dict(limiters or {})

    @classmethod
    def from_configs(cls, configs: Mapping[str, RateLimitConfig], **limiter_kwargs: Any) -> "RateLimiterRegistry":
        return cls(
            {
                category: QueuedRateLimiter(config, name=category, **limiter_kwargs)
                for category, config in configs.items()
            }
        )

    @classmethod
    def from_settings(cls, settings: Any) -> "RateLimiterRegistry":
        return cls.from_configs(default_rate_limit_configs(settings))

    @property
    def categories(self) -> list:
        return list(self._limiters)

    def __contains__(self, category: str) -> bool:
        return category in self._limiters

    def get(self, category: str) -> QueuedRateLimiter:
        try:
            return self._limiters[category]
        except KeyError:
            raise KeyError(f"Unknown rate limit category: {category}") from None

    async def execute(
        self,
        category: str,
        operation: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        return await self.get(category).execute(operation, timeout=timeout)

    def status(self) -> Dict[str, RateLimitStatus]:
        return {category: limiter.get_status() for category, limiter in self._limiters.items()}

    def reset(self) -> None:
        for limiter in self._limiters.values():
            limiter.reset()


def rate_limited(category: str):
    """Route every call of an async method through a category's limiter.

    The decorated method's instance must expose a ``rate_limiters`` registry.

        class CalendarService:
            @rate_limited("api")
            async def create_event(self, ...): ...
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            return await self.rate_limiters.execute(category, lambda: func(self, *args, **kwargs))

        return wrapper

    return decorator

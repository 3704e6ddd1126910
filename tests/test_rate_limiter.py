"""Tests for the sliding-window QueuedRateLimiter and RateLimiterRegistry."""

import asyncio
from types import SimpleNamespace

import pytest

from backend.errors import RateLimitExceeded, RateLimitReset
from backend.services.rate_limiter import (
    QUEUE_SAFETY_MARGIN,
    QueuedRateLimiter,
    RateLimitConfig,
    RateLimiterRegistry,
    default_rate_limit_configs,
    rate_limited,
)
from tests.fixtures import FakeClock


def make_limiter(max_requests=3, window_seconds=1.0, queue_enabled=True, clock=None):
    clock = clock or FakeClock()
    limiter = QueuedRateLimiter(
        RateLimitConfig(max_requests=max_requests, window_seconds=window_seconds, queue_enabled=queue_enabled),
        name="test",
        clock=clock,
        sleep=clock.sleep,
    )
    return limiter, clock


def returning(value, calls=None):
    async def operation():
        if calls is not None:
            calls.append(value)
        return value

    return operation


class TestRateLimitConfig:
    def test_rejects_zero_requests(self):
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=0, window_seconds=1)

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=1, window_seconds=0)

    def test_is_immutable(self):
        config = RateLimitConfig(max_requests=1, window_seconds=1)
        with pytest.raises(Exception):
            config.max_requests = 5

    def test_default_categories(self):
        settings = SimpleNamespace(
            rate_limit_api_per_minute=60,
            rate_limit_search_per_minute=30,
            rate_limit_upload_per_minute=10,
            rate_limit_ai_per_minute=20,
            rate_limit_email_per_hour=50,
            rate_limit_sms_per_minute=60,
        )
        configs = default_rate_limit_configs(settings)

        assert configs["api"] == RateLimitConfig(60, 60)
        assert configs["search"] == RateLimitConfig(30, 60)
        assert configs["upload"] == RateLimitConfig(10, 60)
        assert configs["ai"] == RateLimitConfig(20, 60)
        assert configs["email"] == RateLimitConfig(50, 3600)
        assert configs["sms"] == RateLimitConfig(60, 60)
        assert all(c.queue_enabled for c in configs.values())


class TestImmediateExecution:
    @pytest.mark.asyncio
    async def test_exactly_max_requests_run_immediately(self):
        """The first max_requests calls in a window run without waiting."""
        limiter, clock = make_limiter(max_requests=3)

        results = [await limiter.execute(returning(i)) for i in range(3)]

        assert results == [0, 1, 2]
        assert clock.sleeps == []
        status = limiter.get_status()
        assert status.requests_in_window == 3
        assert status.can_make_request is False

    @pytest.mark.asyncio
    async def test_next_call_rejected_when_queueing_disabled(self):
        limiter, clock = make_limiter(max_requests=2, queue_enabled=False)
        await limiter.execute(returning(1))
        clock.advance(0.25)
        await limiter.execute(returning(2))

        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.execute(returning(3))

        assert exc_info.value.retry_after == pytest.approx(0.75)
        assert exc_info.value.message == "Rate limit exceeded. Please try again later."
        assert limiter.get_status().queue_length == 0

    @pytest.mark.asyncio
    async def test_operation_errors_propagate_without_retry(self):
        limiter, _ = make_limiter()
        calls = []

        async def failing():
            calls.append(1)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await limiter.execute(failing)
        assert calls == [1]
        # The failed call still counts against the window.
        assert limiter.get_status().requests_in_window == 1


class TestWindow:
    @pytest.mark.asyncio
    async def test_window_expiry_frees_capacity(self):
        """After window_seconds of inactivity, a full limiter admits immediately."""
        limiter, clock = make_limiter(max_requests=2, window_seconds=1.0)
        await limiter.execute(returning(1))
        await limiter.execute(returning(2))
        assert limiter.get_status().can_make_request is False

        clock.advance(1.0)

        status = limiter.get_status()
        assert status.requests_in_window == 0
        assert status.can_make_request is True
        assert await limiter.execute(returning(3)) == 3
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_sliding_window_only_drops_aged_timestamps(self):
        limiter, clock = make_limiter(max_requests=2, window_seconds=1.0)
        await limiter.execute(returning(1))
        clock.advance(0.6)
        await limiter.execute(returning(2))
        clock.advance(0.5)

        status = limiter.get_status()
        assert status.requests_in_window == 1
        assert status.can_make_request is True

    def test_status_of_fresh_limiter(self):
        limiter, _ = make_limiter(max_requests=5)
        status = limiter.get_status()

        assert status.requests_in_window == 0
        assert status.max_requests == 5
        assert status.queue_length == 0
        assert status.can_make_request is True


class TestQueueing:
    @pytest.mark.asyncio
    async def test_example_scenario(self):
        """3 per second, four calls at t=0: the fourth waits for the oldest to age out."""
        limiter, clock = make_limiter(max_requests=3, window_seconds=1.0)
        start = clock()
        finished = {}

        async def call(i):
            async def operation():
                finished[i] = clock()
                return i

            return await limiter.execute(operation)

        results = await asyncio.gather(*(call(i) for i in range(4)))

        assert results == [0, 1, 2, 3]
        assert finished[0] == finished[1] == finished[2] == start
        assert finished[3] - start >= 1.0
        assert clock.sleeps == [pytest.approx(1.0 + QUEUE_SAFETY_MARGIN)]

    @pytest.mark.asyncio
    async def test_queued_calls_run_in_arrival_order(self):
        """Dispatch is FIFO and sequential whatever each operation's latency."""
        limiter, clock = make_limiter(max_requests=1, window_seconds=1.0)
        events = []
        await limiter.execute(returning("first"))

        def timed(name, latency):
            async def operation():
                events.append(("start", name))
                await asyncio.sleep(latency)
                events.append(("end", name))
                return name

            return operation

        results = await asyncio.gather(
            limiter.execute(timed("a", 0.03)),
            limiter.execute(timed("b", 0.0)),
            limiter.execute(timed("c", 0.01)),
        )

        assert results == ["a", "b", "c"]
        assert events == [
            ("start", "a"),
            ("end", "a"),
            ("start", "b"),
            ("end", "b"),
            ("start", "c"),
            ("end", "c"),
        ]
        assert len(clock.sleeps) == 3

    @pytest.mark.asyncio
    async def test_self_cancelling_operation_does_not_stall_queue(self):
        limiter, _ = make_limiter(max_requests=1)
        await limiter.execute(returning(0))

        async def cancels_itself():
            raise asyncio.CancelledError()

        first = asyncio.ensure_future(limiter.execute(cancels_itself))
        second = asyncio.ensure_future(limiter.execute(returning("b")))

        results = await asyncio.wait_for(asyncio.gather(first, second, return_exceptions=True), timeout=1.0)

        assert isinstance(results[0], asyncio.CancelledError)
        assert results[1] == "b"
        assert limiter.get_status().queue_length == 0

    @pytest.mark.asyncio
    async def test_new_call_waits_behind_existing_queue(self):
        """A call that finds the queue non-empty is queued even if capacity just freed."""
        limiter, clock = make_limiter(max_requests=1, window_seconds=1.0)
        order = []
        await limiter.execute(returning("first", order))
        queued = asyncio.ensure_future(limiter.execute(returning("queued", order)))
        await asyncio.sleep(0)
        assert limiter.get_status().queue_length == 1

        clock.advance(1.0)
        # Window has room, but someone is already waiting.
        assert limiter.get_status().can_make_request is False

        result = await limiter.execute(returning("late", order))
        await queued

        assert result == "late"
        assert order == ["first", "queued", "late"]

    @pytest.mark.asyncio
    async def test_queued_error_reaches_its_caller_only(self):
        limiter, _ = make_limiter(max_requests=1)
        await limiter.execute(returning(0))

        async def failing():
            raise ValueError("bad request")

        results = await asyncio.gather(
            limiter.execute(failing),
            limiter.execute(returning("ok")),
            return_exceptions=True,
        )

        assert isinstance(results[0], ValueError)
        assert results[1] == "ok"

    @pytest.mark.asyncio
    async def test_status_reports_queue_length(self):
        limiter, _ = make_limiter(max_requests=1)
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        await limiter.execute(returning(0))
        tasks = [asyncio.ensure_future(limiter.execute(blocked)) for _ in range(3)]
        await asyncio.sleep(0)

        status = limiter.get_status()
        assert status.can_make_request is False
        assert status.queue_length >= 2

        gate.set()
        await asyncio.gather(*tasks)
        assert limiter.get_status().queue_length == 0


class TestCancellation:
    @pytest.mark.asyncio
    async def test_timeout_withdraws_queued_call(self):
        limiter = QueuedRateLimiter(RateLimitConfig(max_requests=1, window_seconds=60))
        calls = []
        await limiter.execute(returning("first", calls))

        with pytest.raises(asyncio.TimeoutError):
            await limiter.execute(returning("never", calls), timeout=0.05)

        assert limiter.get_status().queue_length == 0
        assert calls == ["first"]
        limiter.reset()
        await asyncio.sleep(0)

    @pytest.mark.asyncio
    async def test_cancelled_caller_is_removed_from_queue(self):
        limiter = QueuedRateLimiter(RateLimitConfig(max_requests=1, window_seconds=60))
        await limiter.execute(returning(0))

        task = asyncio.ensure_future(limiter.execute(returning(1)))
        await asyncio.sleep(0)
        assert limiter.get_status().queue_length == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert limiter.get_status().queue_length == 0
        limiter.reset()
        await asyncio.sleep(0)


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_clears_window(self):
        limiter, _ = make_limiter(max_requests=1)
        await limiter.execute(returning(0))

        limiter.reset()

        assert limiter.get_status().can_make_request is True
        assert await limiter.execute(returning(1)) == 1

    @pytest.mark.asyncio
    async def test_reset_fails_queued_callers(self):
        limiter = QueuedRateLimiter(RateLimitConfig(max_requests=1, window_seconds=60))
        await limiter.execute(returning(0))

        pending = [asyncio.ensure_future(limiter.execute(returning(i))) for i in range(2)]
        await asyncio.sleep(0)
        limiter.reset()

        results = await asyncio.gather(*pending, return_exceptions=True)
        assert all(isinstance(r, RateLimitReset) for r in results)
        assert all(isinstance(r, RateLimitExceeded) for r in results)
        assert limiter.get_status().queue_length == 0

    @pytest.mark.asyncio
    async def test_reset_lets_dispatched_operation_finish(self):
        limiter, _ = make_limiter(max_requests=1)
        await limiter.execute(returning(0))
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow():
            started.set()
            await release.wait()
            return "done"

        in_flight = asyncio.ensure_future(limiter.execute(slow))
        queued = asyncio.ensure_future(limiter.execute(returning("late")))
        await asyncio.wait_for(started.wait(), timeout=1.0)

        limiter.reset()
        release.set()

        assert await asyncio.wait_for(in_flight, timeout=1.0) == "done"
        with pytest.raises(RateLimitReset):
            await queued
        assert limiter.get_status().queue_length == 0


class TestRegistry:
    def test_unknown_category_raises_key_error(self):
        registry = RateLimiterRegistry.from_configs({"api": RateLimitConfig(1, 1)})

        with pytest.raises(KeyError, match="Unknown rate limit category"):
            registry.get("nope")

    @pytest.mark.asyncio
    async def test_categories_are_independent(self):
        clock = FakeClock()
        registry = RateLimiterRegistry.from_configs(
            {
                "api": RateLimitConfig(1, 60, queue_enabled=False),
                "ai": RateLimitConfig(1, 60, queue_enabled=False),
            },
            clock=clock,
            sleep=clock.sleep,
        )

        await registry.execute("api", returning(1))
        assert await registry.execute("ai", returning(2)) == 2
        with pytest.raises(RateLimitExceeded):
            await registry.execute("api", returning(3))

        status = registry.status()
        assert set(status) == {"api", "ai"}
        assert status["api"].requests_in_window == 1
        assert "api" in registry
        assert registry.categories == ["api", "ai"]

    @pytest.mark.asyncio
    async def test_rate_limited_decorator_routes_through_category(self):
        registry = RateLimiterRegistry.from_configs({"search": RateLimitConfig(1, 60, queue_enabled=False)})

        class SearchService:
            def __init__(self, rate_limiters):
                self.rate_limiters = rate_limiters

            @rate_limited("search")
            async def find(self, term, limit=10):
                return f"{term}:{limit}"

        service = SearchService(registry)

        assert await service.find("acme", limit=5) == "acme:5"
        assert registry.get("search").get_status().requests_in_window == 1
        with pytest.raises(RateLimitExceeded):
            await service.find("again")

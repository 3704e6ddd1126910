"""Tests for the generic retry policy."""

import httpx
import pytest

from backend.errors import RateLimitExceeded, UpstreamError, UpstreamUnauthorized
from backend.services.retry import (
    AUTH_RETRY_LIMIT,
    RetryPolicy,
    call_with_retry,
    error_status,
    is_retryable,
)
from tests.fixtures import FakeClock


class Flaky:
    """Fails with the given errors, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestRetryPolicy:
    def test_delay_grows_linearly(self):
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_auth_retry_limit_is_one(self):
        assert AUTH_RETRY_LIMIT == 1


class TestClassification:
    def test_http_status_error(self):
        request = httpx.Request("GET", "https://example.com")
        error = httpx.HTTPStatusError("boom", request=request, response=httpx.Response(502, request=request))

        assert error_status(error) == 502
        assert is_retryable(error) is True

    def test_upstream_client_error_not_retryable(self):
        assert is_retryable(UpstreamError("bad", 422)) is False

    def test_upstream_network_error_retryable(self):
        assert is_retryable(UpstreamError("Network error calling provider")) is True

    def test_auth_and_rate_limit_errors_not_retryable(self):
        assert is_retryable(UpstreamUnauthorized("nope")) is False
        assert is_retryable(RateLimitExceeded()) is False

    def test_plain_exception_treated_as_network(self):
        assert error_status(ConnectionError("reset")) is None
        assert is_retryable(ConnectionError("reset")) is True


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        clock = FakeClock()
        operation = Flaky([])

        assert await call_with_retry(operation, sleep=clock.sleep) == "ok"
        assert operation.calls == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_retries_server_errors_then_succeeds(self):
        clock = FakeClock()
        retries = []
        operation = Flaky([UpstreamError("down", 500), UpstreamError("down", 503)])

        result = await call_with_retry(
            operation,
            RetryPolicy(max_attempts=3, base_delay=0.5),
            on_retry=lambda attempt, error: retries.append(attempt),
            sleep=clock.sleep,
        )

        assert result == "ok"
        assert operation.calls == 3
        assert retries == [1, 2]
        assert clock.sleeps == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        clock = FakeClock()
        operation = Flaky([UpstreamError("down", 500)] * 5)

        with pytest.raises(UpstreamError):
            await call_with_retry(operation, RetryPolicy(max_attempts=3), sleep=clock.sleep)
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_client_error_fails_immediately(self):
        clock = FakeClock()
        operation = Flaky([UpstreamError("bad request", 400)])

        with pytest.raises(UpstreamError):
            await call_with_retry(operation, sleep=clock.sleep)
        assert operation.calls == 1
        assert clock.sleeps == []

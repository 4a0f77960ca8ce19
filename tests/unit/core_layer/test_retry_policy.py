"""
Unit Tests for the Redis Retry Policy

Covers the backoff schedule and which errors are retried.
"""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from cacheguard.core.resilience import RetryPolicy


class FlakyOperation:
    """Fails ``failures`` times with ``error`` and then returns ``result``."""

    def __init__(self, failures: int, error: Exception, result: str = "ok"):
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.mark.unit
class TestBackoffSchedule:
    def test_delay_grows_linearly(self):
        policy = RetryPolicy(max_retries=3, base_delay_ms=200)

        assert [policy.delay_ms(n) for n in (1, 2, 3)] == [200, 400, 600]

    def test_delay_is_capped(self):
        policy = RetryPolicy(max_retries=50, base_delay_ms=1000)

        assert policy.delay_ms(4) == 4000
        assert policy.delay_ms(5) == 5000
        assert policy.delay_ms(30) == 5000

    def test_should_retry_until_budget_spent(self):
        policy = RetryPolicy(max_retries=3)

        assert policy.should_retry(1)
        assert policy.should_retry(3)
        assert not policy.should_retry(4)


@pytest.mark.unit
class TestRun:
    async def test_success_first_try(self):
        operation = FlakyOperation(failures=0, error=RedisConnectionError())

        assert await RetryPolicy(base_delay_ms=1).run(operation, name="get") == "ok"
        assert operation.calls == 1

    async def test_recovers_after_transport_errors(self):
        operation = FlakyOperation(failures=2, error=RedisConnectionError("refused"))

        assert await RetryPolicy(max_retries=3, base_delay_ms=1).run(operation, name="get") == "ok"
        assert operation.calls == 3

    async def test_reraises_when_budget_spent(self):
        operation = FlakyOperation(failures=10, error=RedisConnectionError("refused"))

        with pytest.raises(RedisConnectionError):
            await RetryPolicy(max_retries=2, base_delay_ms=1).run(operation, name="get")
        assert operation.calls == 3

    async def test_timeouts_are_retried(self):
        operation = FlakyOperation(failures=1, error=asyncio.TimeoutError())

        assert await RetryPolicy(max_retries=1, base_delay_ms=1).run(operation, name="ping") == "ok"
        assert operation.calls == 2

    async def test_command_errors_are_not_retried(self):
        operation = FlakyOperation(failures=1, error=ResponseError("WRONGTYPE"))

        with pytest.raises(ResponseError):
            await RetryPolicy(max_retries=3, base_delay_ms=1).run(operation, name="incr")
        assert operation.calls == 1

    async def test_zero_retries_means_single_attempt(self):
        operation = FlakyOperation(failures=1, error=RedisConnectionError())

        with pytest.raises(RedisConnectionError):
            await RetryPolicy(max_retries=0, base_delay_ms=1).run(operation, name="get")
        assert operation.calls == 1

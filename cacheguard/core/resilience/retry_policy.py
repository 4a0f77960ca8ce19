"""
Retry Policy for the Redis Backend

Backoff schedule for the connection handshake of the resilient cache
client. Backend commands are not retried: a re-sent INCR whose reply was
lost would be applied twice.

Schedule:
---------
    delay(attempt) = min(attempt * base_delay_ms, 5000)   # milliseconds

    attempt 1 fails -> wait 1 * base
    attempt 2 fails -> wait 2 * base
    ...
    once the attempt count exceeds max_retries -> stop, re-raise

The final re-raised transport error makes initialize() enter the in-memory
fallback.

redis-py ships its own Retry object. It is configured with zero retries on
every client we build so this policy is the only one in effect.

Author: System Architect
Date: 2025-12-08
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from redis.exceptions import ClusterDownError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt

from cacheguard.core.config.constants import MAX_RETRY_DELAY_MS, Stage
from cacheguard.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Errors that mean "the backend could not be reached in time".
# Anything else (e.g. WRONGTYPE) is a command error and is never retried.
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    RedisConnectionError,
    RedisTimeoutError,
    ClusterDownError,
    asyncio.TimeoutError,
    OSError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Linear, capped backoff with a fixed retry budget.

    Attributes:
        max_retries: Retries allowed after the first attempt
        base_delay_ms: Delay unit; the n-th retry waits n units
        max_delay_ms: Ceiling for any single delay
    """

    max_retries: int = 3
    base_delay_ms: int = 200
    max_delay_ms: int = MAX_RETRY_DELAY_MS

    def delay_ms(self, attempt: int) -> int:
        return min(attempt * self.base_delay_ms, self.max_delay_ms)

    def should_retry(self, attempt: int) -> bool:
        """True while the attempt count has not exceeded the budget."""
        return attempt <= self.max_retries

    def wait(self, retry_state: RetryCallState) -> float:
        """tenacity wait callback, in seconds."""
        return self.delay_ms(retry_state.attempt_number) / 1000

    def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str,
    ) -> Awaitable[T]:
        """
        Run ``operation`` under this policy.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            name: Operation name used in retry log entries

        Returns:
            Awaitable resolving to the operation result. The last transport
            error is re-raised once the budget is spent.
        """

        @retry(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self.wait,
            retry=retry_if_exception_type(TRANSPORT_ERRORS),
            reraise=True,
            before_sleep=lambda retry_state: logger.info(
                "Retrying Redis operation",
                stage=Stage.CACHE_RETRY,
                operation=name,
                attempt=retry_state.attempt_number,
                delay_ms=self.delay_ms(retry_state.attempt_number),
                error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
            ),
        )
        async def _attempt():
            return await operation()

        return _attempt()

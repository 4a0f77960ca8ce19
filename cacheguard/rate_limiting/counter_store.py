"""
Fixed-Window Rate Limit Counters

In-process counter store used by the IP, user and emergency limiters.

Algorithm (check_limit):
    1. No counter for the key          -> attempts=1, window starts now
    2. Counter older than the window   -> replaced exactly as in (1)
    3. Counter inside the window       -> attempts += 1
                                          allowed while attempts <= max

    reset_at is always window_start + window, i.e. the fixed window end.

The store never raises and performs no I/O, so each call is atomic with
respect to other asyncio tasks. Each process keeps its own counters.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from cacheguard.core.config.constants import RATE_LIMIT_STALE_AFTER_SECONDS


@dataclass
class RateLimitCounter:
    attempts: int
    window_start: float  # epoch seconds
    window: float = 0.0  # seconds, from the most recent check


@dataclass(frozen=True)
class RateLimitResult:
    """
    Outcome of a limit check.

    Attributes:
        allowed: Whether the request is admitted
        remaining: Requests left in the window (never negative)
        reset_at: Window end as epoch seconds
        limit: Budget the check ran against
    """

    allowed: bool
    remaining: int
    reset_at: float
    limit: int

    @property
    def reset_epoch(self) -> int:
        """Window end rounded up to whole epoch seconds (header value)."""
        return math.ceil(self.reset_at)

    def retry_after(self, now: float | None = None) -> int:
        """Whole seconds until the window ends, never negative."""
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))


class RateLimitStore:
    """
    Map of key -> RateLimitCounter with fixed-window semantics.

    One instance is created per limiter family and shared by every request
    in the process (see ResilienceContext).
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._counters: dict[str, RateLimitCounter] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._counters)

    def __contains__(self, key: str) -> bool:
        return key in self._counters

    def check_limit(self, key: str, max_attempts: int, window_ms: int) -> RateLimitResult:
        """Count one request for ``key`` and decide whether it is admitted."""
        now = self._clock()
        window = window_ms / 1000
        counter = self._counters.get(key)

        if counter is None or now - counter.window_start > window:
            counter = RateLimitCounter(attempts=1, window_start=now, window=window)
            self._counters[key] = counter
        else:
            counter.attempts += 1
            counter.window = window

        allowed = counter.attempts <= max_attempts
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, max_attempts - counter.attempts) if allowed else 0,
            reset_at=counter.window_start + window,
            limit=max_attempts,
        )

    def get_status(self, key: str, max_attempts: int, window_ms: int) -> RateLimitResult:
        """
        Report the state of ``key`` without counting a request.

        ``allowed`` tells whether one more request would be admitted. A
        fresh or expired key reports the full budget.
        """
        now = self._clock()
        window = window_ms / 1000
        counter = self._counters.get(key)

        if counter is None or now - counter.window_start > window:
            return RateLimitResult(
                allowed=max_attempts > 0,
                remaining=max_attempts,
                reset_at=now + window,
                limit=max_attempts,
            )

        remaining = max(0, max_attempts - counter.attempts)
        return RateLimitResult(
            allowed=remaining > 0,
            remaining=remaining,
            reset_at=counter.window_start + window,
            limit=max_attempts,
        )

    def reset_limit(self, key: str) -> None:
        self._counters.pop(key, None)

    def clear_all(self) -> None:
        self._counters.clear()

    def cleanup(self, max_age_seconds: float = RATE_LIMIT_STALE_AFTER_SECONDS) -> int:
        """
        Remove counters whose window started more than ``max_age_seconds`` ago
        and has also ended. A counter inside a window longer than
        ``max_age_seconds`` is kept until that window expires.

        Returns:
            int: Number of counters removed
        """
        now = self._clock()
        stale = [
            key
            for key, counter in self._counters.items()
            if now - counter.window_start > max(max_age_seconds, counter.window)
        ]
        for key in stale:
            del self._counters[key]
        return len(stale)

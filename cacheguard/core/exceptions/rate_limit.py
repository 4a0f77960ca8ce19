"""
Rate Limiting Exceptions

All exceptions related to rate limiting operations

Author: System Architect
Date: 2025-12-08
"""

import math
import time
from typing import Any

from cacheguard.core.config.constants import (
    ERROR_RATE_LIMITED,
    HEADER_RATE_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_RETRY_AFTER,
)
from cacheguard.core.exceptions.base import CacheGuardError


class RateLimitError(CacheGuardError):
    """Base exception for rate limiting errors."""
    pass


class RateLimitExceededError(RateLimitError):
    """
    Raised by HTTP dependencies when a rate limit rejects a request.

    The limiter itself never raises; it returns ``allowed=False``. The API
    layer converts that outcome into this exception so a single exception
    handler can render the 429 response.

    The response includes:
    - X-RateLimit-Limit: Maximum requests allowed
    - X-RateLimit-Remaining: Always 0
    - X-RateLimit-Reset: Window end as epoch seconds
    - Retry-After: Seconds until the window ends
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: str = ERROR_RATE_LIMITED,
        limit: int = 0,
        reset_at: float | None = None,
        correlation_id: str | None = None,
        extra_headers: dict[str, str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.error_code = error_code
        self.limit = limit
        self.reset_at = reset_at if reset_at is not None else time.time()
        self.extra_headers = dict(extra_headers or {})
        super().__init__(
            message,
            correlation_id=correlation_id,
            details={"code": error_code, "limit": limit, **(details or {})},
        )

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets, never negative."""
        return max(0, math.ceil(self.reset_at - time.time()))

    @property
    def headers(self) -> dict[str, str]:
        return {
            HEADER_RATE_LIMIT: str(self.limit),
            HEADER_RATE_LIMIT_REMAINING: "0",
            HEADER_RATE_LIMIT_RESET: str(math.ceil(self.reset_at)),
            HEADER_RETRY_AFTER: str(self.retry_after),
            **self.extra_headers,
        }

"""
Unit Tests for Core Exceptions

Tests for the exception hierarchy and the 429 header contract.
"""

import time

import pytest

from cacheguard.core.config.constants import ERROR_AUTH_RATE_LIMITED, ERROR_RATE_LIMITED
from cacheguard.core.exceptions import (
    CacheClientClosedError,
    CacheConnectionError,
    CacheError,
    CacheGuardError,
    ConfigurationError,
    RateLimitError,
    RateLimitExceededError,
)


@pytest.mark.unit
class TestCacheGuardError:
    """Test the base exception class."""

    def test_base_error_creation(self):
        error = CacheGuardError("Test message")
        assert str(error) == "Test message"
        assert error.message == "Test message"

    def test_base_error_default_values(self):
        error = CacheGuardError("Test")
        assert error.details == {}
        assert error.correlation_id is None

    def test_details_are_copied(self):
        details = {"key": "value"}
        error = CacheGuardError("Test", details=details)
        error.with_context(extra=1)

        assert details == {"key": "value"}
        assert error.details == {"key": "value", "extra": 1}

    def test_to_dict(self):
        error = CacheGuardError("boom", correlation_id="abc", details={"op": "get"})

        assert error.to_dict() == {
            "error_type": "CacheGuardError",
            "message": "boom",
            "correlation_id": "abc",
            "details": {"op": "get"},
        }

    def test_with_suggestion_is_chainable(self):
        error = CacheConnectionError("down").with_suggestion("check REDIS_URL")
        assert error.details["suggestion"] == "check REDIS_URL"

    def test_from_exception_keeps_original_type(self):
        error = ConfigurationError.from_exception(ValueError("bad port"), url="redis://x:y")

        assert isinstance(error, ConfigurationError)
        assert error.details["url"] == "redis://x:y"


@pytest.mark.unit
class TestHierarchy:
    def test_cache_errors(self):
        assert issubclass(CacheConnectionError, CacheError)
        assert issubclass(CacheClientClosedError, CacheError)
        assert issubclass(CacheError, CacheGuardError)

    def test_rate_limit_errors(self):
        assert issubclass(RateLimitExceededError, RateLimitError)
        assert issubclass(RateLimitError, CacheGuardError)


@pytest.mark.unit
class TestRateLimitExceededError:
    def test_defaults(self):
        error = RateLimitExceededError("slow down")

        assert error.error_code == ERROR_RATE_LIMITED
        assert error.details["code"] == ERROR_RATE_LIMITED

    def test_retry_after_rounds_up(self):
        error = RateLimitExceededError("slow down", reset_at=time.time() + 10.2)
        assert error.retry_after in (10, 11)

    def test_retry_after_never_negative(self):
        error = RateLimitExceededError("slow down", reset_at=time.time() - 30)
        assert error.retry_after == 0

    def test_headers(self):
        reset_at = time.time() + 60.5
        error = RateLimitExceededError(
            "slow down",
            error_code=ERROR_AUTH_RATE_LIMITED,
            limit=5,
            reset_at=reset_at,
            extra_headers={"X-Emergency-Mode": "active"},
        )

        headers = error.headers
        assert headers["X-RateLimit-Limit"] == "5"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert int(headers["X-RateLimit-Reset"]) >= int(reset_at)
        assert int(headers["Retry-After"]) > 0
        assert headers["X-Emergency-Mode"] == "active"

"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions inherit from.
All specialized exceptions are in their respective themed modules.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any


class CacheGuardError(Exception):
    """
    Base exception for all caching and rate limiting errors.

    All custom exceptions inherit from this class to enable:
    - Consistent error handling
    - Correlation ID propagation
    - Structured error logging

    Attributes:
        message: Error message
        correlation_id: Request correlation ID (if available)
        details: Additional error details (dict)

    Example:
        raise CacheConnectionError(
            "No cache backend available",
            details={"operation": "get", "mode": "memory"}
        )
    """

    def __init__(
        self, message: str, correlation_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.correlation_id = correlation_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging/API responses.

        Returns:
            Dict with error_type, message, correlation_id, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "correlation_id": self.correlation_id,
            "details": self.details,
        }

    def with_suggestion(self, suggestion: str) -> "CacheGuardError":
        """Add a suggestion to help operators fix the error."""
        self.details["suggestion"] = suggestion
        return self

    def with_context(self, **context) -> "CacheGuardError":
        """Add additional context to the error details."""
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        correlation_str = f", correlation_id='{self.correlation_id}'" if self.correlation_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{correlation_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        correlation_id: str | None = None,
        **details
    ) -> "CacheGuardError":
        """
        Create an error from another exception.

        Useful for wrapping third-party exceptions with additional context.

        Example:
            >>> try:
            ...     await redis.ping()
            ... except redis.ConnectionError as e:
            ...     raise CacheConnectionError.from_exception(e, url="redis://cache:6379")
        """
        error_message = message or str(exc)
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, correlation_id=correlation_id, details=error_details)


class ConfigurationError(CacheGuardError):
    """Raised when configuration is invalid or missing."""
    pass

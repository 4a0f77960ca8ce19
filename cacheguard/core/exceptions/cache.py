"""
Cache-Related Exceptions

All exceptions related to caching operations (Redis, in-memory fallback).

Author: System Architect
Date: 2025-12-08
"""

from cacheguard.core.exceptions.base import CacheGuardError


class CacheError(CacheGuardError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when an operation has no backend to run against.

    This happens only when the client is in memory mode and the memory
    fallback has been disabled with REDIS_FALLBACK_TO_MEMORY=false.
    Transport errors from a live backend are propagated unchanged.
    """
    pass


class CacheClientClosedError(CacheError):
    """Raised when the resilient cache client is used after close()."""
    pass

"""Cache backends: bounded in-memory store and the resilient Redis client."""

from .memory_cache import BoundedMemoryCache
from .resilient_client import (
    BackendFactory,
    BackendState,
    CacheClientConfig,
    ResilientCacheClient,
    verify_connection,
)

__all__ = [
    "BackendFactory",
    "BackendState",
    "BoundedMemoryCache",
    "CacheClientConfig",
    "ResilientCacheClient",
    "verify_connection",
]

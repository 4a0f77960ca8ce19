from .cache_service import CacheKeys, CacheResult, CacheService, CacheTTL

__all__ = ["CacheKeys", "CacheResult", "CacheService", "CacheTTL"]

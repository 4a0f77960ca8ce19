"""
Exception Module

Structured exception hierarchy for the caching and rate limiting layer.

Module Structure:
-----------------
- **base.py**: CacheGuardError base class + ConfigurationError
- **cache.py**: Cache client exceptions
- **rate_limit.py**: Rate limiting exceptions

Usage:
------
```python
from cacheguard.core.exceptions import CacheConnectionError, RateLimitExceededError
```

Author: System Architect
Date: 2025-12-08
"""

from cacheguard.core.exceptions.base import CacheGuardError, ConfigurationError
from cacheguard.core.exceptions.cache import (
    CacheClientClosedError,
    CacheConnectionError,
    CacheError,
)
from cacheguard.core.exceptions.rate_limit import RateLimitError, RateLimitExceededError

__all__ = [
    "CacheClientClosedError",
    "CacheConnectionError",
    "CacheError",
    "CacheGuardError",
    "ConfigurationError",
    "RateLimitError",
    "RateLimitExceededError",
]

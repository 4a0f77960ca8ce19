"""
Middleware Package
==================

AVAILABLE MIDDLEWARE:
---------------------
1. error_handler: Centralized handling of unhandled exceptions
2. rate_limit: App-wide IP limiter plus the route-level limit dependencies

MIDDLEWARE ORDERING:
--------------------
Starlette runs the most recently added middleware first, so the app factory
adds the global limiter before the error handler. That way a failure inside
the limiter still gets the standard error envelope.
"""

from .error_handler import ErrorHandlingMiddleware, add_error_handling_middleware
from .rate_limit import (
    RateLimitMiddleware,
    add_rate_limit_middleware,
    client_ip,
    emergency_rate_limit,
    ip_rate_limit,
    rejection_response,
    user_rate_limit,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RateLimitMiddleware",
    "add_error_handling_middleware",
    "add_rate_limit_middleware",
    "client_ip",
    "emergency_rate_limit",
    "ip_rate_limit",
    "rejection_response",
    "user_rate_limit",
]

"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the caching and rate limiting layer.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for state management
- Easy to update and track changes

Author: System Architect
Date: 2025-12-05
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Processing stages used as the ``stage=`` field of log entries.

    Format: {PREFIX}.{STEP}_{DESCRIPTIVE_NAME}

    Examples:
        logger.warning("Falling back to memory", stage=Stage.CACHE_FALLBACK)
    """

    # Resilient cache client lifecycle
    CACHE_INIT = "CACHE.1_INITIALIZATION"
    CACHE_CONNECT = "CACHE.2_CONNECT"
    CACHE_RETRY = "CACHE.3_RETRY"
    CACHE_FALLBACK = "CACHE.4_FALLBACK"
    CACHE_CLOSE = "CACHE.5_CLOSE"

    # Rate limiting
    RATE_LIMIT_CHECK = "RL.1_CHECK"
    RATE_LIMIT_REJECT = "RL.2_REJECT"
    RATE_LIMIT_SWEEP = "RL.3_SWEEP"
    RATE_LIMIT_VIOLATION = "RL.4_VIOLATION"

    # Application lifecycle
    STARTUP = "APP.1_STARTUP"
    SHUTDOWN = "APP.2_SHUTDOWN"


# ============================================================================
# Cache Connection Modes
# ============================================================================


class ConnectionMode(str, Enum):
    """
    Backend currently authoritative for the resilient cache client.

    SINGLE: one networked Redis node
    CLUSTER: Redis Cluster
    MEMORY: in-process bounded fallback store
    """

    SINGLE = "single"
    CLUSTER = "cluster"
    MEMORY = "memory"


# ============================================================================
# User Roles
# ============================================================================


class UserRole(str, Enum):
    """Marketplace roles that carry a rate limit multiplier."""

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    USER = "USER"


# ============================================================================
# Error Codes (returned in rejection envelopes)
# ============================================================================

ERROR_AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
ERROR_USER_RATE_LIMITED = "USER_RATE_LIMITED"
ERROR_RATE_LIMITED = "RATE_LIMITED"


# ============================================================================
# In-Memory Fallback Defaults
# ============================================================================

FALLBACK_MAX_ENTRIES = 10_000
FALLBACK_DEFAULT_TTL_SECONDS = 60

# Backoff ceiling for backend retries
MAX_RETRY_DELAY_MS = 5000


# ============================================================================
# Rate Limiting Defaults
# ============================================================================

DEFAULT_IP_MAX_ATTEMPTS = 5
DEFAULT_IP_WINDOW_MS = 15 * 60 * 1000
DEFAULT_USER_BASE_LIMIT = 100
DEFAULT_USER_WINDOW_MS = 60 * 1000

RATE_LIMIT_CLEANUP_INTERVAL_SECONDS = 5 * 60
RATE_LIMIT_STALE_AFTER_SECONDS = 15 * 60

# Violation monitoring
VIOLATION_ALERT_THRESHOLD = 10
VIOLATION_ALERT_WINDOW_SECONDS = 5 * 60
VIOLATION_TTL_SECONDS = 60 * 60


# ============================================================================
# Key Prefixes
# ============================================================================

KEY_PREFIX_RATE_LIMIT = "ratelimit"
KEY_PREFIX_EMERGENCY = "ratelimit:emergency"
KEY_PREFIX_GLOBAL = "ratelimit:global"
KEY_PREFIX_VIOLATION = "ratelimit:violation"
KEY_PREFIX_USER = "user"


# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_CORRELATION_ID = "X-Correlation-ID"
HEADER_RATE_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_LIMIT_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_EMERGENCY_MODE = "X-Emergency-Mode"
HEADER_FORWARDED_FOR = "x-forwarded-for"
HEADER_REAL_IP = "x-real-ip"

UNKNOWN_CLIENT_IP = "unknown"

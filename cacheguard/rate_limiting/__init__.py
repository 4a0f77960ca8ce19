"""
Rate Limiting Module

Fixed-window limiters keyed by IP, user and emergency rule, plus violation
monitoring and stale counter cleanup.
"""

from .counter_store import RateLimitResult, RateLimitStore
from .emergency import EmergencyMode, EmergencyModeConfig, RateLimitRule, form_rule, global_rule, login_rule
from .sweeper import RateLimitSweeper
from .user_rate_limiter import UserLimitResult, UserRateLimiter, get_rate_limit_for_role
from .violation_monitor import Violation, ViolationMonitor

__all__ = [
    "EmergencyMode",
    "EmergencyModeConfig",
    "RateLimitResult",
    "RateLimitRule",
    "RateLimitStore",
    "RateLimitSweeper",
    "UserLimitResult",
    "UserRateLimiter",
    "Violation",
    "ViolationMonitor",
    "form_rule",
    "get_rate_limit_for_role",
    "global_rule",
    "login_rule",
]

"""
Per-User Rate Limiter

Role-aware limits for authenticated users. Each user gets its own bucket
(``user:{user_id}``) in a dedicated counter store, so users never share a
budget regardless of role.

Effective limit:
    floor(base_limit * multiplier[role]), multiplier defaults to 1
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass

from cacheguard.core.config.constants import (
    DEFAULT_USER_BASE_LIMIT,
    DEFAULT_USER_WINDOW_MS,
    KEY_PREFIX_USER,
    UserRole,
)
from cacheguard.rate_limiting.counter_store import RateLimitResult, RateLimitStore

DEFAULT_ROLE_MULTIPLIERS: dict[str, float] = {
    UserRole.ADMIN.value: 5,
    UserRole.MANAGER.value: 3,
    UserRole.USER.value: 1,
}


def get_rate_limit_for_role(
    role: str | None,
    base_limit: int = DEFAULT_USER_BASE_LIMIT,
    multipliers: Mapping[str, float] = DEFAULT_ROLE_MULTIPLIERS,
) -> int:
    """Scale ``base_limit`` by the role multiplier; unknown roles get 1."""
    multiplier = multipliers.get(role, 1) if role else 1
    return math.floor(base_limit * multiplier)


def user_key(user_id: str) -> str:
    return f"{KEY_PREFIX_USER}:{user_id}"


@dataclass(frozen=True)
class UserLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: float

    @classmethod
    def from_result(cls, result: RateLimitResult) -> "UserLimitResult":
        return cls(
            allowed=result.allowed,
            remaining=result.remaining,
            limit=result.limit,
            reset_at=result.reset_at,
        )


class UserRateLimiter:
    """Fixed-window limiter keyed by user id."""

    def __init__(self, store: RateLimitStore | None = None):
        self._store = store or RateLimitStore()

    @property
    def store(self) -> RateLimitStore:
        return self._store

    def check_user_limit(
        self,
        user_id: str,
        limit: int = DEFAULT_USER_BASE_LIMIT,
        window_ms: int = DEFAULT_USER_WINDOW_MS,
    ) -> UserLimitResult:
        return UserLimitResult.from_result(self._store.check_limit(user_key(user_id), limit, window_ms))

    def get_user_limit_status(
        self,
        user_id: str,
        limit: int = DEFAULT_USER_BASE_LIMIT,
        window_ms: int = DEFAULT_USER_WINDOW_MS,
    ) -> UserLimitResult:
        """Current status without counting a request."""
        return UserLimitResult.from_result(self._store.get_status(user_key(user_id), limit, window_ms))

    def reset_user_limit(self, user_id: str) -> None:
        self._store.reset_limit(user_key(user_id))

    def clear_all_user_limits(self) -> None:
        self._store.clear_all()

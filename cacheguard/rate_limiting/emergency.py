"""
Emergency Mode and Rate Limit Rules

An operator (or the admin API) can put the service into emergency mode
during an attack or traffic spike. Every emergency-aware limiter then
tightens its budget:

    max_attempts = emergency_max_attempts or max(1, floor(max_attempts * rate_limit_multiplier))
    window_ms    = emergency_window_ms    or floor(window_ms * window_multiplier)

Presets cover the three places the marketplace applies limits: login,
public forms (leads, contact) and the global API budget.
"""

import math
from dataclasses import dataclass, field, replace

from cacheguard.core.config.constants import KEY_PREFIX_EMERGENCY, KEY_PREFIX_GLOBAL
from cacheguard.core.logging.logger import get_logger

logger = get_logger(__name__)

MINUTE_MS = 60 * 1000


@dataclass(frozen=True)
class EmergencyModeConfig:
    """
    Attributes:
        rate_limit_multiplier: Share of the normal budget kept (0.5 = half)
        window_multiplier: Window stretch factor (2 = twice as long)
        require_captcha: Signal for form handlers to demand a CAPTCHA
        blocked_patterns: Extra user-agent patterns to refuse
    """

    rate_limit_multiplier: float = 0.5
    window_multiplier: float = 2.0
    require_captcha: bool = True
    blocked_patterns: tuple[str, ...] = field(default_factory=tuple)


class EmergencyMode:
    """Process-wide emergency switch plus its tightening parameters."""

    def __init__(self, config: EmergencyModeConfig | None = None, active: bool = False):
        self._config = config or EmergencyModeConfig()
        self._active = active

    def is_active(self) -> bool:
        return self._active

    def activate(self, reason: str | None = None) -> None:
        if not self._active:
            logger.warning("Emergency mode activated", reason=reason)
        self._active = True

    def deactivate(self) -> None:
        if self._active:
            logger.info("Emergency mode deactivated")
        self._active = False

    def get_config(self) -> EmergencyModeConfig:
        return self._config

    def update_config(self, **changes) -> EmergencyModeConfig:
        if "blocked_patterns" in changes:
            changes["blocked_patterns"] = tuple(changes["blocked_patterns"])
        self._config = replace(self._config, **changes)
        logger.info("Emergency config updated", config=self._config)
        return self._config

    def reset_config(self) -> EmergencyModeConfig:
        self._config = EmergencyModeConfig()
        logger.info("Emergency config reset to defaults")
        return self._config


@dataclass(frozen=True)
class RateLimitRule:
    """
    Limits for one emergency-aware limiter.

    ``emergency_max_attempts`` / ``emergency_window_ms`` override the
    multipliers when set.
    """

    max_attempts: int = 5
    window_ms: int = 15 * MINUTE_MS
    key_prefix: str = KEY_PREFIX_EMERGENCY
    emergency_max_attempts: int | None = None
    emergency_window_ms: int | None = None

    def effective_limits(
        self, emergency: bool, config: EmergencyModeConfig | None = None
    ) -> tuple[int, int]:
        """Return (max_attempts, window_ms) for the current mode."""
        if not emergency:
            return self.max_attempts, self.window_ms
        config = config or EmergencyModeConfig()
        max_attempts = self.emergency_max_attempts
        if max_attempts is None:
            max_attempts = max(1, math.floor(self.max_attempts * config.rate_limit_multiplier))
        window_ms = self.emergency_window_ms
        if window_ms is None:
            window_ms = math.floor(self.window_ms * config.window_multiplier)
        return max_attempts, window_ms


def login_rule(production: bool) -> RateLimitRule:
    """Production: 5 per 15 min, 2 per 30 min in emergency."""
    return RateLimitRule(
        max_attempts=5 if production else 100,
        emergency_max_attempts=2 if production else 50,
        window_ms=15 * MINUTE_MS,
        emergency_window_ms=30 * MINUTE_MS,
        key_prefix="ratelimit:login:emergency",
    )


def form_rule(production: bool) -> RateLimitRule:
    """Production: 10 per minute, 3 per 2 min in emergency."""
    return RateLimitRule(
        max_attempts=10 if production else 100,
        emergency_max_attempts=3 if production else 50,
        window_ms=MINUTE_MS,
        emergency_window_ms=2 * MINUTE_MS,
        key_prefix="ratelimit:form:emergency",
    )


def global_rule(production: bool) -> RateLimitRule:
    """Production: 200 per minute, 50 per minute in emergency."""
    return RateLimitRule(
        max_attempts=200 if production else 500,
        emergency_max_attempts=50 if production else 250,
        window_ms=MINUTE_MS,
        emergency_window_ms=MINUTE_MS,
        key_prefix=KEY_PREFIX_GLOBAL,
    )

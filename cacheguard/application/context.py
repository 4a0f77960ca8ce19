"""
Resilience Context

Holds the single per-process instance of every stateful component of the
caching and rate limiting layer, so the app factory can build them once,
store them on ``app.state`` and manage their lifecycle from the lifespan.

Components:
    cache_client       ResilientCacheClient (Redis with in-memory fallback)
    ip_store           Counters for IP-keyed limiters (auth routes, global)
    emergency_store    Counters for emergency-aware rules (login, form)
    user_limiter       Role-aware per-user limiter with its own store
    emergency_mode     Process-wide emergency switch
    violation_monitor  Violation log, alerting and aggregation
    sweeper            Background cleanup of stale counters
    cache_service      Read-through cache for reference data
"""

from dataclasses import dataclass, field

from cacheguard.application.services.cache_service import CacheService
from cacheguard.core.config.constants import ConnectionMode, Stage
from cacheguard.core.config.settings import Settings, get_settings
from cacheguard.core.logging.logger import get_logger
from cacheguard.infrastructure.cache.resilient_client import CacheClientConfig, ResilientCacheClient
from cacheguard.rate_limiting.counter_store import RateLimitStore
from cacheguard.rate_limiting.emergency import EmergencyMode
from cacheguard.rate_limiting.sweeper import RateLimitSweeper
from cacheguard.rate_limiting.user_rate_limiter import UserRateLimiter
from cacheguard.rate_limiting.violation_monitor import ViolationMonitor

logger = get_logger(__name__)


@dataclass
class ResilienceContext:
    settings: Settings
    cache_client: ResilientCacheClient
    ip_store: RateLimitStore = field(default_factory=RateLimitStore)
    emergency_store: RateLimitStore = field(default_factory=RateLimitStore)
    user_limiter: UserRateLimiter = field(default_factory=UserRateLimiter)
    emergency_mode: EmergencyMode = field(default_factory=EmergencyMode)
    violation_monitor: ViolationMonitor | None = None
    sweeper: RateLimitSweeper | None = None
    cache_service: CacheService | None = None

    def __post_init__(self):
        if self.violation_monitor is None:
            self.violation_monitor = ViolationMonitor(cache=self.cache_client)
        if self.sweeper is None:
            self.sweeper = RateLimitSweeper(
                self.counter_stores,
                interval_seconds=self.settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
                max_age_seconds=self.settings.RATE_LIMIT_STALE_AFTER_SECONDS,
            )
        if self.cache_service is None:
            self.cache_service = CacheService(self.cache_client)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ResilienceContext":
        settings = settings or get_settings()
        client = ResilientCacheClient(CacheClientConfig.from_settings(settings))
        return cls(settings=settings, cache_client=client)

    @property
    def counter_stores(self) -> list[RateLimitStore]:
        return [self.ip_store, self.emergency_store, self.user_limiter.store]

    async def start(self) -> ConnectionMode:
        """Connect the cache client and start the sweeper."""
        mode = await self.cache_client.initialize()
        self.sweeper.start()
        logger.info("Resilience context started", stage=Stage.STARTUP, cache_mode=mode.value)
        return mode

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.violation_monitor.drain()
        await self.cache_client.close()
        logger.info("Resilience context closed", stage=Stage.SHUTDOWN)

    def clear_rate_limits(self) -> None:
        """Drop every counter and recorded violation."""
        for store in self.counter_stores:
            store.clear_all()
        self.violation_monitor.clear_all_violations()
        logger.warning("All rate limit counters cleared", stage=Stage.RATE_LIMIT_SWEEP)

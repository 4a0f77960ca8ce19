"""
Rate Limit Counter Sweeper

Background task that periodically drops stale counters from every
in-process RateLimitStore so memory stays bounded by active clients.

Lifecycle:
    sweeper = RateLimitSweeper([ip_store, user_store, emergency_store])
    sweeper.start()       # on application startup
    ...
    await sweeper.stop()  # on shutdown
"""

import asyncio
from collections.abc import Iterable

from cacheguard.core.config.constants import (
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
    RATE_LIMIT_STALE_AFTER_SECONDS,
    Stage,
)
from cacheguard.core.logging.logger import get_logger
from cacheguard.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)
from cacheguard.rate_limiting.counter_store import RateLimitStore

logger = get_logger(__name__)


class RateLimitSweeper:
    def __init__(
        self,
        stores: Iterable[RateLimitStore],
        interval_seconds: float = RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
        max_age_seconds: float = RATE_LIMIT_STALE_AFTER_SECONDS,
        metrics: MetricsCollector | None = None,
    ):
        self._stores = list(stores)
        self._interval = interval_seconds
        self._max_age = max_age_seconds
        self._metrics = metrics or get_metrics_collector()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> int:
        """Run one cleanup pass over every store. Returns counters removed."""
        removed = sum(store.cleanup(self._max_age) for store in self._stores)
        if removed:
            self._metrics.record_counters_swept(removed)
            logger.debug("Swept stale rate limit counters", stage=Stage.RATE_LIMIT_SWEEP, removed=removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.sweep()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Rate limit sweeper started",
            stage=Stage.RATE_LIMIT_SWEEP,
            interval_seconds=self._interval,
            max_age_seconds=self._max_age,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Rate limit sweeper stopped", stage=Stage.RATE_LIMIT_SWEEP)
        self._task = None

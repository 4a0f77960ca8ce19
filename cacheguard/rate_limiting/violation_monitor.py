"""
Rate Limit Violation Monitor

Records every rejected request, raises an alert when one IP keeps hitting
limits, and aggregates violations for the admin dashboard.

Storage:
    - In-process ring of recent violations (kept for one hour), which backs
      the metrics endpoints.
    - Optional mirror into the resilient cache client so counters are shared
      across processes when Redis is reachable:
          ratelimit:violation:ip:{ip}
          ratelimit:violation:ip-path:{ip}:{urlencoded path}
      each expiring after one hour.

Request path:
    Limiters call dispatch(), which schedules log_violation() as a background
    task. The request never waits for it and a failing task is logged at
    debug level and otherwise ignored.
"""

import asyncio
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from cacheguard.core.config.constants import (
    KEY_PREFIX_VIOLATION,
    VIOLATION_ALERT_THRESHOLD,
    VIOLATION_ALERT_WINDOW_SECONDS,
    VIOLATION_TTL_SECONDS,
    Stage,
)
from cacheguard.core.exceptions import CacheGuardError
from cacheguard.core.logging.logger import get_logger
from cacheguard.infrastructure.cache.resilient_client import BACKEND_ERRORS, ResilientCacheClient
from cacheguard.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)

logger = get_logger(__name__)

TOP_N = 10
MAX_RECORDS = 10_000


@dataclass(frozen=True)
class Violation:
    ip: str
    path: str
    timestamp: float  # epoch seconds
    user_agent: str | None = None
    user_id: str | None = None

    @property
    def iso_timestamp(self) -> str:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat()


def ip_key(ip: str) -> str:
    return f"{KEY_PREFIX_VIOLATION}:ip:{ip}"


def ip_path_key(ip: str, path: str) -> str:
    return f"{KEY_PREFIX_VIOLATION}:ip-path:{ip}:{quote(path, safe='')}"


class ViolationMonitor:
    """
    Violation log, alerting and aggregation.

    Args:
        cache: Optional resilient cache client to mirror counters into
        alert_threshold: Violations from one IP that trigger an alert
        alert_window_seconds: Window the threshold is counted over
        retention_seconds: How long violations count towards metrics
    """

    def __init__(
        self,
        cache: ResilientCacheClient | None = None,
        metrics: MetricsCollector | None = None,
        alert_threshold: int = VIOLATION_ALERT_THRESHOLD,
        alert_window_seconds: int = VIOLATION_ALERT_WINDOW_SECONDS,
        retention_seconds: int = VIOLATION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._cache = cache
        self._metrics = metrics or get_metrics_collector()
        self._alert_threshold = alert_threshold
        self._alert_window = alert_window_seconds
        self._retention = retention_seconds
        self._clock = clock
        self._records: deque[Violation] = deque(maxlen=MAX_RECORDS)
        self._last_alert: dict[str, float] = {}
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def log_violation(self, violation: Violation) -> None:
        logger.warning(
            "Rate limit violation",
            stage=Stage.RATE_LIMIT_VIOLATION,
            ip=violation.ip,
            path=violation.path,
            timestamp=violation.iso_timestamp,
            user_agent=violation.user_agent,
            user_id=violation.user_id,
        )
        self._metrics.record_violation()

        self._prune()
        self._records.append(violation)
        self._check_alert(violation.ip)

        if self._cache is not None:
            await self._mirror(violation)

    def dispatch(self, violation: Violation) -> None:
        """Schedule log_violation() without waiting for it."""
        task = asyncio.create_task(self.log_violation(violation))
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("Failed to log violation", error=str(error), error_type=type(error).__name__)

    async def drain(self) -> None:
        """Wait for violations still being recorded (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _mirror(self, violation: Violation) -> None:
        try:
            for key in (ip_key(violation.ip), ip_path_key(violation.ip, violation.path)):
                await self._cache.incr(key)
                await self._cache.expire(key, self._retention)
        except (CacheGuardError, *BACKEND_ERRORS) as e:
            logger.debug("Failed to mirror violation counters", ip=violation.ip, error=str(e))

    def _prune(self) -> None:
        cutoff = self._clock() - self._retention
        while self._records and self._records[0].timestamp < cutoff:
            self._records.popleft()

    def _check_alert(self, ip: str) -> None:
        now = self._clock()
        window_start = now - self._alert_window
        recent = sum(1 for v in self._records if v.ip == ip and v.timestamp >= window_start)
        if recent < self._alert_threshold:
            return
        last = self._last_alert.get(ip)
        if last is not None and now - last < self._alert_window:
            return
        self._last_alert[ip] = now
        self._metrics.record_alert()
        logger.error(
            "ALERT: Rate limit threshold exceeded",
            stage=Stage.RATE_LIMIT_VIOLATION,
            ip=ip,
            violations=recent,
            window_seconds=self._alert_window,
            alert_type="RATE_LIMIT_THRESHOLD",
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_violation_count_for_ip(self, ip: str) -> int:
        self._prune()
        return sum(1 for v in self._records if v.ip == ip)

    def get_rate_limit_metrics(self) -> dict[str, Any]:
        """
        Aggregate retained violations.

        Returns:
            dict with total_violations, violations_by_endpoint,
            top_violating_ips and last_hour_violations
        """
        self._prune()
        hour_ago = self._clock() - 3600
        by_path = Counter(v.path for v in self._records)
        by_ip = Counter(v.ip for v in self._records)
        return {
            "total_violations": len(self._records),
            "violations_by_endpoint": [
                {"path": path, "count": count} for path, count in by_path.most_common(TOP_N)
            ],
            "top_violating_ips": [
                {"ip": ip, "count": count} for ip, count in by_ip.most_common(TOP_N)
            ],
            "last_hour_violations": sum(1 for v in self._records if v.timestamp >= hour_ago),
        }

    def clear_all_violations(self) -> None:
        self._records.clear()
        self._last_alert.clear()

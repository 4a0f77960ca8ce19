#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

This module provides metrics collection for:
- Cache operations by backend (single, cluster, memory)
- Fallback dispatches by operation
- Current cache connection mode
- Rate limit decisions by limiter and outcome
- Rate limit violations and alerts

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Efficient storage and aggregation

Author: Senior Solution Architect
Date: 2025-12-05
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Info,
    generate_latest,
)

from cacheguard.core.config.constants import ConnectionMode
from cacheguard.core.config.settings import get_settings
from cacheguard.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

# Cache metrics
CACHE_OPERATIONS = Counter(
    'cacheguard_cache_operations_total',
    'Cache operations by backend that served them',
    ['operation', 'backend']
)

CACHE_FALLBACKS = Counter(
    'cacheguard_cache_fallbacks_total',
    'Backend failures answered from the in-memory fallback',
    ['operation']
)

CACHE_MODE = Gauge(
    'cacheguard_cache_mode',
    'Current cache connection mode (1 for the active mode)',
    ['mode']
)

CACHE_MODE_TRANSITIONS = Counter(
    'cacheguard_cache_mode_transitions_total',
    'Cache connection mode transitions',
    ['from_mode', 'to_mode']
)

# Rate limiting metrics
RATE_LIMIT_DECISIONS = Counter(
    'cacheguard_rate_limit_decisions_total',
    'Rate limit checks by limiter and outcome',
    ['limiter', 'outcome']  # outcome: allowed, rejected
)

RATE_LIMIT_VIOLATIONS = Counter(
    'cacheguard_rate_limit_violations_total',
    'Rate limit violations recorded by the monitor'
)

RATE_LIMIT_ALERTS = Counter(
    'cacheguard_rate_limit_alerts_total',
    'Per-IP violation threshold alerts'
)

RATE_LIMIT_SWEPT = Counter(
    'cacheguard_rate_limit_counters_swept_total',
    'Stale rate limit counters removed by the sweeper'
)

# Error metrics
ERRORS = Counter(
    'cacheguard_errors_total',
    'Total errors by type',
    ['error_type', 'stage']
)

# App info
APP_INFO = Info(
    'cacheguard_app',
    'Application information'
)


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = get_metrics_collector()
        metrics.record_cache_operation("get", "memory")
        output = metrics.get_prometheus_metrics()
    """

    def __init__(self):
        self.settings = get_settings()

        APP_INFO.info({
            'version': self.settings.app.APP_VERSION,
            'environment': self.settings.app.ENVIRONMENT,
            'app_name': self.settings.app.APP_NAME
        })

        logger.info("Metrics collector initialized", stage="M.0")

    # =========================================================================
    # Cache Metrics
    # =========================================================================

    def record_cache_operation(self, operation: str, backend: str) -> None:
        CACHE_OPERATIONS.labels(operation=operation, backend=backend).inc()

    def record_cache_fallback(self, operation: str) -> None:
        CACHE_FALLBACKS.labels(operation=operation).inc()

    def set_cache_mode(self, mode: ConnectionMode) -> None:
        """Flag ``mode`` as active and clear the others."""
        for candidate in ConnectionMode:
            CACHE_MODE.labels(mode=candidate.value).set(1 if candidate is mode else 0)

    def record_mode_transition(self, from_mode: ConnectionMode, to_mode: ConnectionMode) -> None:
        CACHE_MODE_TRANSITIONS.labels(from_mode=from_mode.value, to_mode=to_mode.value).inc()

    # =========================================================================
    # Rate Limiting Metrics
    # =========================================================================

    def record_rate_limit_decision(self, limiter: str, allowed: bool) -> None:
        outcome = "allowed" if allowed else "rejected"
        RATE_LIMIT_DECISIONS.labels(limiter=limiter, outcome=outcome).inc()

    def record_violation(self) -> None:
        RATE_LIMIT_VIOLATIONS.inc()

    def record_alert(self) -> None:
        RATE_LIMIT_ALERTS.inc()

    def record_counters_swept(self, count: int) -> None:
        if count:
            RATE_LIMIT_SWEPT.inc(count)

    # =========================================================================
    # Error Metrics
    # =========================================================================

    def record_error(self, error_type: str, stage: str) -> None:
        ERRORS.labels(error_type=error_type, stage=stage).inc()

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global metrics collector (the Prometheus registry is process-wide anyway)
_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics

"""
Health Check Routes
===================

GET /health        Liveness plus the current cache mode. Always 200: running
                   on the in-memory fallback is degraded, not down.
GET /health/cache  Cache client detail including a live PING.

A service configured for Redis but currently on the fallback store reports
``degraded``. A service with no Redis configured reports ``healthy`` in
memory mode, since that is its intended mode.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from cacheguard.application.api.dependencies import CacheClientDep, SettingsDep
from cacheguard.application.api.models.admin import CacheHealthResponse, HealthResponse
from cacheguard.core.config.constants import ConnectionMode
from cacheguard.core.exceptions import CacheGuardError
from cacheguard.core.logging.logger import get_logger
from cacheguard.infrastructure.cache.resilient_client import BACKEND_ERRORS

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("", response_model=HealthResponse)
async def health_check(cache: CacheClientDep, settings: SettingsDep):
    """Quick health check for load balancers."""
    mode = cache.get_mode()
    degraded = mode is ConnectionMode.MEMORY and cache.config.target_mode() is not ConnectionMode.MEMORY
    return HealthResponse(
        status="degraded" if degraded else "healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.APP_VERSION,
        cache_mode=mode,
    )


@router.get("/cache", response_model=CacheHealthResponse)
async def cache_health(cache: CacheClientDep):
    try:
        ping = await cache.ping()
    except (CacheGuardError, *BACKEND_ERRORS) as e:
        logger.warning("Cache health ping failed", error=str(e))
        ping = None

    health = cache.health()
    return CacheHealthResponse(
        mode=cache.get_mode(),
        connected=health["connected"],
        ping=ping,
        fallback_enabled=health["fallback_enabled"],
        fallback_entries=health["fallback_entries"],
    )

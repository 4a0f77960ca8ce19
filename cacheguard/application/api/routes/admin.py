"""
Admin Routes
============

Operational endpoints for the caching and rate limiting layer:

    GET    /admin/rate-limits/metrics            Violation aggregates
    GET    /admin/rate-limits/violations/{ip}    Violations recorded for one IP
    DELETE /admin/rate-limits                    Clear all counters and violations
    DELETE /admin/rate-limits/users/{user_id}    Reset one user's budget
    GET    /admin/emergency-mode                 Current emergency state
    POST   /admin/emergency-mode                 Toggle / tune emergency mode
    POST   /admin/cache/reconnect                Leave memory mode if Redis is back
    GET    /admin/metrics                        Prometheus exposition

Mutating endpoints are throttled with the form preset, which tightens
automatically while emergency mode is active.

SECURITY CONSIDERATIONS:
------------------------
Authentication happens upstream of this service's routers; these endpoints
must only be mounted behind it or on an internal port.
"""

from fastapi import APIRouter, Depends, Response, status

from cacheguard.application.api.dependencies import (
    CacheClientDep,
    ContextDep,
    EmergencyModeDep,
    MetricsDep,
    ViolationMonitorDep,
)
from cacheguard.application.api.middleware.rate_limit import emergency_rate_limit
from cacheguard.application.api.models.admin import (
    ActionResponse,
    EmergencyModeResponse,
    EmergencyModeUpdate,
    RateLimitMetricsResponse,
    ReconnectResponse,
    ViolationCountResponse,
)
from cacheguard.core.logging.logger import get_logger
from cacheguard.rate_limiting.emergency import EmergencyMode, form_rule

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

mutation_limit = Depends(emergency_rate_limit(form_rule))


def _emergency_state(emergency: EmergencyMode) -> EmergencyModeResponse:
    config = emergency.get_config()
    return EmergencyModeResponse(
        active=emergency.is_active(),
        rate_limit_multiplier=config.rate_limit_multiplier,
        window_multiplier=config.window_multiplier,
        require_captcha=config.require_captcha,
        blocked_patterns=list(config.blocked_patterns),
    )


# ============================================================================
# RATE LIMITS
# ============================================================================


@router.get("/rate-limits/metrics", response_model=RateLimitMetricsResponse)
async def get_rate_limit_metrics(monitor: ViolationMonitorDep):
    return monitor.get_rate_limit_metrics()


@router.get("/rate-limits/violations/{ip}", response_model=ViolationCountResponse)
async def get_ip_violations(ip: str, monitor: ViolationMonitorDep):
    return ViolationCountResponse(ip=ip, violations=monitor.get_violation_count_for_ip(ip))


@router.delete(
    "/rate-limits",
    response_model=ActionResponse,
    dependencies=[mutation_limit],
)
async def clear_rate_limits(context: ContextDep):
    """
    Drop every in-process counter and recorded violation.

    Counters mirrored into Redis expire on their own.
    """
    context.clear_rate_limits()
    return ActionResponse(success=True, message="All rate limits cleared")


@router.delete(
    "/rate-limits/users/{user_id}",
    response_model=ActionResponse,
    dependencies=[mutation_limit],
)
async def reset_user_rate_limit(user_id: str, context: ContextDep):
    context.user_limiter.reset_user_limit(user_id)
    logger.info("User rate limit reset", user_id=user_id)
    return ActionResponse(success=True, message=f"Rate limit reset for user {user_id}")


# ============================================================================
# EMERGENCY MODE
# ============================================================================


@router.get("/emergency-mode", response_model=EmergencyModeResponse)
async def get_emergency_mode(emergency: EmergencyModeDep):
    return _emergency_state(emergency)


@router.post(
    "/emergency-mode",
    response_model=EmergencyModeResponse,
    dependencies=[mutation_limit],
)
async def update_emergency_mode(update: EmergencyModeUpdate, emergency: EmergencyModeDep):
    changes = update.model_dump(
        include={"rate_limit_multiplier", "window_multiplier", "require_captcha"},
        exclude_none=True,
    )
    if changes:
        emergency.update_config(**changes)

    if update.active:
        emergency.activate(update.reason)
    else:
        emergency.deactivate()

    return _emergency_state(emergency)


# ============================================================================
# CACHE
# ============================================================================


@router.post(
    "/cache/reconnect",
    response_model=ReconnectResponse,
    dependencies=[mutation_limit],
)
async def reconnect_cache(cache: CacheClientDep):
    """
    Retry the configured backend.

    Memory mode is sticky: the client only returns to Redis through this
    call (or a restart).
    """
    reconnected = await cache.reconnect()
    logger.info("Cache reconnect requested", reconnected=reconnected, mode=cache.get_mode().value)
    return ReconnectResponse(reconnected=reconnected, mode=cache.get_mode())


# ============================================================================
# PROMETHEUS
# ============================================================================


@router.get("/metrics", status_code=status.HTTP_200_OK)
async def get_prometheus_metrics(metrics: MetricsDep):
    return Response(content=metrics.get_prometheus_metrics(), media_type=metrics.get_content_type())

"""
Rate Limit Middleware and Dependencies
======================================

HTTP side of the rate limiters. The limiters themselves never raise; this
module turns an ``allowed=False`` outcome into a 429 response.

ROUTE-LEVEL LIMITS (FastAPI dependencies):
------------------------------------------
    @router.post("/auth/login", dependencies=[Depends(ip_rate_limit())])
    @router.post("/leads", dependencies=[Depends(emergency_rate_limit(form_rule))])
    @router.get("/projects", dependencies=[Depends(user_rate_limit())])

    - ip_rate_limit:        key = client IP (or key_func),   code AUTH_RATE_LIMITED
    - user_rate_limit:      key = authenticated user id,     code USER_RATE_LIMITED
    - emergency_rate_limit: key = rule prefix + client IP,   code RATE_LIMITED

    On success the dependency sets X-RateLimit-Limit / -Remaining / -Reset
    on the response. On rejection it raises RateLimitExceededError, which the
    application exception handler renders with rejection_response().

APP-WIDE LIMIT (middleware):
----------------------------
    RateLimitMiddleware applies the global emergency-aware rule to every
    request and answers 429 itself, before routing.

RESPONSE BODY:
--------------
    {
        "success": false,
        "error": {"code": ..., "message": ..., "retry_after": <seconds>},
        "correlation_id": ...
    }
"""

import time
from collections.abc import Callable
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from cacheguard.core.config.constants import (
    ERROR_AUTH_RATE_LIMITED,
    ERROR_RATE_LIMITED,
    ERROR_USER_RATE_LIMITED,
    HEADER_EMERGENCY_MODE,
    HEADER_FORWARDED_FOR,
    HEADER_RATE_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_REAL_IP,
    KEY_PREFIX_RATE_LIMIT,
    UNKNOWN_CLIENT_IP,
    Stage,
)
from cacheguard.core.exceptions import RateLimitExceededError
from cacheguard.core.logging.logger import get_correlation_id, get_logger
from cacheguard.infrastructure.monitoring.metrics_collector import get_metrics_collector
from cacheguard.rate_limiting.counter_store import RateLimitResult
from cacheguard.rate_limiting.emergency import RateLimitRule
from cacheguard.rate_limiting.user_rate_limiter import get_rate_limit_for_role
from cacheguard.rate_limiting.violation_monitor import Violation

logger = get_logger(__name__)

EMERGENCY_MESSAGE = "Too many requests. System is under high load, please try again later."
DEFAULT_MESSAGE = "Too many requests. Please try again later."


# ============================================================================
# HELPERS
# ============================================================================


def client_ip(request: Request) -> str:
    """
    Resolve the caller IP.

    First entry of X-Forwarded-For, then X-Real-IP, otherwise "unknown".
    The socket peer is deliberately not used: behind the proxy it is always
    the proxy itself.
    """
    forwarded = request.headers.get(HEADER_FORWARDED_FOR)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get(HEADER_REAL_IP)
    if real_ip:
        return real_ip.strip()
    return UNKNOWN_CLIENT_IP


def _user_attr(user: Any, name: str) -> Any:
    if user is None:
        return None
    if isinstance(user, dict):
        return user.get(name)
    return getattr(user, name, None)


def current_user(request: Request) -> Any:
    """Authenticated user placed on request.state by the auth layer, if any."""
    return getattr(request.state, "user", None)


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        HEADER_RATE_LIMIT: str(result.limit),
        HEADER_RATE_LIMIT_REMAINING: str(result.remaining),
        HEADER_RATE_LIMIT_RESET: str(result.reset_epoch),
    }


def rejection_response(exc: RateLimitExceededError) -> JSONResponse:
    """Render a RateLimitExceededError as the 429 envelope."""
    error: dict[str, Any] = {
        "code": exc.error_code,
        "message": exc.message,
        "retry_after": exc.retry_after,
    }
    if "emergency_mode" in exc.details:
        error["emergency_mode"] = exc.details["emergency_mode"]
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": error,
            "correlation_id": exc.correlation_id or get_correlation_id() or "unknown",
        },
        headers=exc.headers,
    )


def _report_violation(request: Request, ip: str) -> None:
    context = request.app.state.context
    context.violation_monitor.dispatch(
        Violation(
            ip=ip,
            path=request.url.path,
            timestamp=time.time(),
            user_agent=request.headers.get("user-agent"),
            user_id=_user_attr(current_user(request), "id"),
        )
    )


def _reject(
    request: Request,
    ip: str,
    result: RateLimitResult,
    *,
    limiter: str,
    error_code: str,
    message: str,
    extra_headers: dict[str, str] | None = None,
    details: dict[str, Any] | None = None,
) -> RateLimitExceededError:
    _report_violation(request, ip)
    logger.warning(
        "Rate limit exceeded",
        stage=Stage.RATE_LIMIT_REJECT,
        limiter=limiter,
        ip=ip,
        path=request.url.path,
        limit=result.limit,
    )
    return RateLimitExceededError(
        message,
        error_code=error_code,
        limit=result.limit,
        reset_at=result.reset_at,
        correlation_id=get_correlation_id(),
        extra_headers=extra_headers,
        details=details,
    )


# ============================================================================
# ROUTE DEPENDENCIES
# ============================================================================


def ip_rate_limit(
    max_attempts: int | None = None,
    window_ms: int | None = None,
    key_func: Callable[[Request], str] | None = None,
):
    """
    IP-keyed fixed-window limit for authentication style routes.

    Args:
        max_attempts: Budget per window (RATE_LIMIT_MAX_ATTEMPTS if omitted)
        window_ms: Window length (RATE_LIMIT_WINDOW_MS if omitted)
        key_func: Optional request -> key function replacing the client IP
    """

    async def dependency(request: Request, response: Response) -> RateLimitResult:
        context = request.app.state.context
        settings = context.settings
        ip = client_ip(request)
        key = f"{KEY_PREFIX_RATE_LIMIT}:{key_func(request) if key_func else ip}"

        result = context.ip_store.check_limit(
            key,
            max_attempts or settings.RATE_LIMIT_MAX_ATTEMPTS,
            window_ms or settings.RATE_LIMIT_WINDOW_MS,
        )
        get_metrics_collector().record_rate_limit_decision("ip", result.allowed)

        if not result.allowed:
            raise _reject(
                request,
                ip,
                result,
                limiter="ip",
                error_code=ERROR_AUTH_RATE_LIMITED,
                message="Too many attempts. Please try again later.",
            )

        response.headers.update(rate_limit_headers(result))
        return result

    return dependency


def user_rate_limit(
    base_limit: int | None = None,
    window_ms: int | None = None,
    multipliers: dict[str, float] | None = None,
):
    """Role-aware per-user limit. Anonymous requests pass through unchecked."""

    async def dependency(request: Request, response: Response) -> RateLimitResult | None:
        user = current_user(request)
        user_id = _user_attr(user, "id")
        if user_id is None:
            return None

        context = request.app.state.context
        settings = context.settings
        role_kwargs = {"multipliers": multipliers} if multipliers is not None else {}
        limit = get_rate_limit_for_role(
            _user_attr(user, "role"),
            base_limit or settings.USER_RATE_LIMIT_BASE,
            **role_kwargs,
        )
        result = context.user_limiter.check_user_limit(
            str(user_id), limit, window_ms or settings.USER_RATE_LIMIT_WINDOW_MS
        )
        get_metrics_collector().record_rate_limit_decision("user", result.allowed)

        outcome = RateLimitResult(
            allowed=result.allowed,
            remaining=result.remaining,
            reset_at=result.reset_at,
            limit=result.limit,
        )
        if not result.allowed:
            raise _reject(
                request,
                client_ip(request),
                outcome,
                limiter="user",
                error_code=ERROR_USER_RATE_LIMITED,
                message="Too many requests for this account. Please try again later.",
            )

        response.headers.update(rate_limit_headers(outcome))
        return outcome

    return dependency


def check_emergency_rule(request: Request, rule: RateLimitRule) -> tuple[RateLimitResult, bool]:
    """Count the request against ``rule``; returns (result, emergency_active)."""
    context = request.app.state.context
    emergency = context.emergency_mode
    active = emergency.is_active()
    max_attempts, window_ms = rule.effective_limits(active, emergency.get_config())
    result = context.emergency_store.check_limit(
        f"{rule.key_prefix}:{client_ip(request)}", max_attempts, window_ms
    )
    return result, active


def emergency_rate_limit(rule: RateLimitRule | Callable[[bool], RateLimitRule]):
    """
    Emergency-aware limit driven by a RateLimitRule.

    ``rule`` may be a preset factory such as form_rule; it is then resolved
    per request with the production flag of the running settings.
    """

    async def dependency(request: Request, response: Response) -> RateLimitResult:
        if isinstance(rule, RateLimitRule):
            resolved = rule
        else:
            resolved = rule(request.app.state.context.settings.is_production)
        result, active = check_emergency_rule(request, resolved)
        get_metrics_collector().record_rate_limit_decision("emergency", result.allowed)
        extra = {HEADER_EMERGENCY_MODE: "active"} if active else {}

        if not result.allowed:
            raise _reject(
                request,
                client_ip(request),
                result,
                limiter="emergency",
                error_code=ERROR_RATE_LIMITED,
                message=EMERGENCY_MESSAGE if active else DEFAULT_MESSAGE,
                extra_headers=extra,
                details={"emergency_mode": active},
            )

        response.headers.update({**rate_limit_headers(result), **extra})
        return result

    return dependency


# ============================================================================
# APP-WIDE MIDDLEWARE
# ============================================================================


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Global per-IP budget applied before routing.

    Paths starting with one of ``exempt_prefixes`` (health probes, metrics
    scrapes) are never counted. Route-level limit headers win over the
    global ones when both are present.
    """

    def __init__(self, app, rule: RateLimitRule, exempt_prefixes: tuple[str, ...] = ()):
        super().__init__(app)
        self.rule = rule
        self.exempt_prefixes = exempt_prefixes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.exempt_prefixes):
            return await call_next(request)

        result, active = check_emergency_rule(request, self.rule)
        get_metrics_collector().record_rate_limit_decision("global", result.allowed)
        extra = {HEADER_EMERGENCY_MODE: "active"} if active else {}

        if not result.allowed:
            exc = _reject(
                request,
                client_ip(request),
                result,
                limiter="global",
                error_code=ERROR_RATE_LIMITED,
                message=EMERGENCY_MESSAGE if active else DEFAULT_MESSAGE,
                extra_headers=extra,
                details={"emergency_mode": active},
            )
            return rejection_response(exc)

        response = await call_next(request)
        for name, value in {**rate_limit_headers(result), **extra}.items():
            response.headers.setdefault(name, value)
        return response


def add_rate_limit_middleware(app, rule: RateLimitRule, exempt_prefixes: tuple[str, ...] = ()):
    """Register the global limiter on ``app``."""
    app.add_middleware(RateLimitMiddleware, rule=rule, exempt_prefixes=exempt_prefixes)
    logger.info(
        "Global rate limit middleware registered",
        max_attempts=rule.max_attempts,
        window_ms=rule.window_ms,
        exempt_prefixes=list(exempt_prefixes),
    )

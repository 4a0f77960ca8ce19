"""
Admin and Health API Models

Pydantic request/response models for the operational endpoints. Field
constraints mirror the runtime invariants (counts never negative,
multipliers in range) so FastAPI rejects nonsense input with a 422.
"""

from pydantic import BaseModel, Field

from cacheguard.core.config.constants import ConnectionMode


# ============================================================================
# HEALTH
# ============================================================================


class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy or degraded")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    cache_mode: ConnectionMode


class CacheHealthResponse(BaseModel):
    mode: ConnectionMode
    connected: bool
    ping: str | None = Field(None, description="PING reply, None when the client is unusable")
    fallback_enabled: bool
    fallback_entries: int = Field(..., ge=0)


# ============================================================================
# RATE LIMITS
# ============================================================================


class EndpointViolations(BaseModel):
    path: str
    count: int = Field(..., ge=0)


class IPViolations(BaseModel):
    ip: str
    count: int = Field(..., ge=0)


class RateLimitMetricsResponse(BaseModel):
    total_violations: int = Field(..., ge=0)
    violations_by_endpoint: list[EndpointViolations]
    top_violating_ips: list[IPViolations]
    last_hour_violations: int = Field(..., ge=0)


class ViolationCountResponse(BaseModel):
    ip: str
    violations: int = Field(..., ge=0)


class ActionResponse(BaseModel):
    success: bool
    message: str


# ============================================================================
# EMERGENCY MODE
# ============================================================================


class EmergencyModeUpdate(BaseModel):
    """
    Body of POST /admin/emergency-mode.

    Omitted multipliers keep their current value.
    """

    active: bool
    reason: str | None = Field(None, max_length=500)
    rate_limit_multiplier: float | None = Field(None, gt=0, le=1)
    window_multiplier: float | None = Field(None, ge=1)
    require_captcha: bool | None = None


class EmergencyModeResponse(BaseModel):
    active: bool
    rate_limit_multiplier: float
    window_multiplier: float
    require_captcha: bool
    blocked_patterns: list[str]


class ReconnectResponse(BaseModel):
    reconnected: bool
    mode: ConnectionMode

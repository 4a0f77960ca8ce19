"""
FastAPI Dependencies
====================

Accessors for the per-process components the app factory stores on
``app.state``. Routes declare what they need with the Annotated aliases at
the bottom of this module:

    @router.get("/materials")
    async def list_materials(cache: CacheServiceDep):
        ...

Tests swap components by building the app with their own ResilienceContext.
"""

from typing import Annotated

from fastapi import Depends, Request

from cacheguard.application.context import ResilienceContext
from cacheguard.application.services.cache_service import CacheService
from cacheguard.core.config.settings import Settings
from cacheguard.infrastructure.cache.resilient_client import ResilientCacheClient
from cacheguard.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)
from cacheguard.rate_limiting.emergency import EmergencyMode
from cacheguard.rate_limiting.violation_monitor import ViolationMonitor


def get_context(request: Request) -> ResilienceContext:
    """
    Retrieve the ResilienceContext created by create_app().

    Raises:
        RuntimeError: If the app was not built by create_app()
    """
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError(
            "ResilienceContext missing from app.state; build the application with create_app()"
        )
    return context


def get_app_settings(context: Annotated[ResilienceContext, Depends(get_context)]) -> Settings:
    return context.settings


def get_cache_client(context: Annotated[ResilienceContext, Depends(get_context)]) -> ResilientCacheClient:
    return context.cache_client


def get_cache_service(context: Annotated[ResilienceContext, Depends(get_context)]) -> CacheService:
    return context.cache_service


def get_emergency_mode(context: Annotated[ResilienceContext, Depends(get_context)]) -> EmergencyMode:
    return context.emergency_mode


def get_violation_monitor(context: Annotated[ResilienceContext, Depends(get_context)]) -> ViolationMonitor:
    return context.violation_monitor


# ============================================================================
# TYPE ALIASES FOR ROUTE SIGNATURES
# ============================================================================

ContextDep = Annotated[ResilienceContext, Depends(get_context)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
CacheClientDep = Annotated[ResilientCacheClient, Depends(get_cache_client)]
CacheServiceDep = Annotated[CacheService, Depends(get_cache_service)]
EmergencyModeDep = Annotated[EmergencyMode, Depends(get_emergency_mode)]
ViolationMonitorDep = Annotated[ViolationMonitor, Depends(get_violation_monitor)]
MetricsDep = Annotated[MetricsCollector, Depends(get_metrics_collector)]

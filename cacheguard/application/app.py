#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Builds the HTTP surface of the caching and rate limiting layer: health and
admin routers, the app-wide IP limiter, error handling and correlation IDs.

Author: Senior Solution Architect
Date: 2025-12-05
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cacheguard.application.api.middleware.error_handler import add_error_handling_middleware
from cacheguard.application.api.middleware.rate_limit import (
    add_rate_limit_middleware,
    rejection_response,
)
from cacheguard.application.api.routes.admin import router as admin_router
from cacheguard.application.api.routes.health import router as health_router
from cacheguard.application.context import ResilienceContext
from cacheguard.core.config.constants import (
    HEADER_CORRELATION_ID,
    HEADER_EMERGENCY_MODE,
    HEADER_RATE_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_RETRY_AFTER,
    Stage,
)
from cacheguard.core.config.settings import get_settings
from cacheguard.core.exceptions import CacheError, CacheGuardError, RateLimitExceededError
from cacheguard.core.logging.logger import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)
from cacheguard.infrastructure.monitoring.metrics_collector import get_metrics_collector
from cacheguard.rate_limiting.emergency import global_rule

logger = get_logger(__name__)


# ============================================================================
# Application Lifespan
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle (startup and shutdown).
    """
    context: ResilienceContext = app.state.context
    settings = context.settings

    setup_logging(log_level=settings.LOG_LEVEL, log_format=settings.LOG_FORMAT)

    logger.info(
        "Starting cacheguard",
        stage=Stage.STARTUP,
        environment=settings.ENVIRONMENT,
        version=settings.APP_VERSION,
    )

    try:
        # Redis may be unreachable; the client then serves from memory
        await context.start()
        logger.info("Application startup complete", stage=Stage.STARTUP)

        yield

    finally:
        logger.info("Shutting down application", stage=Stage.SHUTDOWN)
        await context.close()
        logger.info("Application shutdown complete", stage=Stage.SHUTDOWN)


# ============================================================================
# Exception Handlers
# ============================================================================


async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
    """Render rejections raised by the route-level limit dependencies."""
    return rejection_response(exc)


async def cacheguard_exception_handler(request: Request, exc: CacheGuardError):
    """
    Handle errors from this package that reached a route.

    Cache errors only surface with the memory fallback disabled and map to
    503. Anything else is a 500.
    """
    status_code = 503 if isinstance(exc, CacheError) else 500
    logger.error(
        f"Request failed: {exc.message}",
        error_type=type(exc).__name__,
        path=request.url.path,
        status_code=status_code,
    )
    get_metrics_collector().record_error(type(exc).__name__, "exception_handler")

    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {
                "code": "SERVICE_UNAVAILABLE" if status_code == 503 else "INTERNAL_ERROR",
                "message": exc.message,
            },
            "correlation_id": exc.correlation_id or "unknown",
        },
    )


# ============================================================================
# Application Factory
# ============================================================================


def create_app(context: ResilienceContext | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        context: Pre-built components (tests inject their own); built from
            settings when omitted

    Returns:
        FastAPI: Configured application instance
    """
    context = context or ResilienceContext.from_settings(get_settings())
    settings = context.settings
    base_path = settings.API_BASE_PATH

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Resilient caching and rate limiting for the marketplace API",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.context = context

    # ========================================================================
    # MIDDLEWARE REGISTRATION
    # ========================================================================
    # Starlette runs the last added middleware first. Resulting order for a
    # request: correlation id -> error handling -> CORS -> global limiter.

    if settings.GLOBAL_RATE_LIMIT_ENABLED:
        add_rate_limit_middleware(
            app,
            global_rule(settings.is_production),
            exempt_prefixes=(f"{base_path}/health", f"{base_path}/admin/metrics"),
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            HEADER_CORRELATION_ID,
            HEADER_RATE_LIMIT,
            HEADER_RATE_LIMIT_REMAINING,
            HEADER_RATE_LIMIT_RESET,
            HEADER_RETRY_AFTER,
            HEADER_EMERGENCY_MODE,
        ],
    )

    add_error_handling_middleware(app, include_traceback=(settings.ENVIRONMENT == "development"))

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Inject a correlation ID into logs and the response."""
        correlation_id = request.headers.get(HEADER_CORRELATION_ID) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
            response.headers[HEADER_CORRELATION_ID] = correlation_id
            return response
        finally:
            clear_correlation_id()

    # ========================================================================
    # EXCEPTION HANDLERS
    # ========================================================================

    app.add_exception_handler(RateLimitExceededError, rate_limit_handler)
    app.add_exception_handler(CacheGuardError, cacheguard_exception_handler)

    # ========================================================================
    # ROUTER REGISTRATION
    # ========================================================================
    # All endpoints live under API_BASE_PATH (default /api/v1), e.g.
    # GET /api/v1/health, GET /api/v1/admin/rate-limits/metrics

    app.include_router(health_router, prefix=base_path)
    app.include_router(admin_router, prefix=base_path)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs",
            "health": f"{base_path}/health",
        }

    return app


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "cacheguard.application.app:create_app",
        factory=True,
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )

"""
Error Handling Middleware
=========================

Last line of defense for exceptions that no route handler or exception
handler dealt with. Cache faults normally never reach this point (the cache
client falls back to memory); what does arrive here is logged with full
context, counted, and answered with the standard error envelope:

    {
        "success": false,
        "error": {"code": "INTERNAL_ERROR", "message": ...},
        "correlation_id": ...
    }

Stack traces are only included when ``include_traceback`` is set, which the
app factory does in development.
"""

import traceback
from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from cacheguard.core.config.constants import Stage
from cacheguard.core.logging.logger import get_correlation_id, get_logger
from cacheguard.infrastructure.monitoring.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

ERROR_INTERNAL = "INTERNAL_ERROR"


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, include_traceback: bool = False):
        super().__init__(app)
        self.include_traceback = include_traceback

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except Exception as e:
            method = request.method
            path = request.url.path
            error_type = type(e).__name__

            logger.error(
                f"Unhandled exception in request: {method} {path}",
                method=method,
                path=path,
                error_type=error_type,
                error_message=str(e),
                exc_info=True,
            )
            get_metrics_collector().record_error(error_type, "unhandled_exception")

            error = {
                "code": ERROR_INTERNAL,
                "message": "An unexpected error occurred while processing your request",
                "error_type": error_type,
            }
            if self.include_traceback:
                error["traceback"] = traceback.format_exc()
                error["detail"] = str(e)

            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": error,
                    "correlation_id": get_correlation_id() or "unknown",
                },
            )


def add_error_handling_middleware(app, include_traceback: bool = False):
    """
    Register ErrorHandlingMiddleware.

    Add it last so it wraps every other middleware (Starlette runs the most
    recently added middleware first).
    """
    app.add_middleware(ErrorHandlingMiddleware, include_traceback=include_traceback)
    logger.info(
        "Error handling middleware registered",
        stage=Stage.STARTUP,
        include_traceback=include_traceback,
    )

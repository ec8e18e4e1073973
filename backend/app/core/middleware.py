"""
Sandbox Pool - HTTP Middleware
Request ID propagation and timing
"""

import time
from typing import Callable, Set
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging_config import (
    logger,
    set_request_id,
    generate_request_id,
)


# Paths that should skip request logging
SKIP_LOGGING_PATHS: Set[str] = {
    "/health",
    "/",
    "/docs",
    "/redoc",
    "/openapi.json",
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an ID (incoming X-Request-ID or a fresh one),
    logs method/path/status/duration, and echoes the ID back in the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        path = request.url.path
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        if path not in SKIP_LOGGING_PATHS:
            logger.info(
                f"HTTP {request.method} {path} - {response.status_code} ({duration_ms:.2f}ms)",
                extra={
                    "event_type": "http_request",
                    "http_method": request.method,
                    "http_path": path,
                    "http_status": response.status_code,
                    "duration_ms": duration_ms,
                }
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response

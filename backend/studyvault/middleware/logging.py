"""
StudyVault Backend — Request Logging Middleware
=================================================

What:  One access-log line per request: method, path, status, duration,
       request ID and the calling owner.
How:   Level follows the status class (5xx ERROR, 4xx WARNING, else INFO).
Who:   Every request except /health.

Privacy:
    Logged:     method, path, status, duration, request ID, X-User-ID
    Not logged: bodies (prompts, study material, API keys), auth headers
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from studyvault.middleware.request_id import request_id_var

logger = logging.getLogger("studyvault.access")

_QUIET_PATHS = frozenset({"/health"})


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in _QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        owner = request.headers.get("X-User-ID", "-")
        rid = request_id_var.get("")
        logger.log(
            _level_for(response.status_code),
            "%s %s %d %.1fms [%s] owner=%s",
            request.method,
            path,
            response.status_code,
            duration_ms,
            rid,
            owner,
            extra={
                "request_id": rid,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response

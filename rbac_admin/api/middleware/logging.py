"""
Access log middleware.

One event per request when it completes. Refused requests (401/403) are
logged at warning so authentication and authorization failures stand out
from ordinary traffic.
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

QUIET_PATHS = frozenset({"/health"})


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        started = time.perf_counter()
        response = await call_next(request)

        if request.url.path in QUIET_PATHS:
            return response

        status_code = response.status_code
        log = logger.warning if status_code in (401, 403) else logger.info
        log(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            client_ip=request.client.host if request.client else None,
        )
        return response

"""Structured access logging for the incidents API."""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

# Probed every few seconds by the orchestrator; logging them drowns real traffic
QUIET_PATHS = frozenset({"/health", "/ready"})


class AccessLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log one ``http_request`` event per request in place of uvicorn's access log.

    Trace and span ids are added by the logging pipeline, so a slow
    ``/threads/active`` call can be followed into its database spans.
    Server errors are logged at warning level.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        if request.url.path in QUIET_PATHS:
            return response

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "http_request",
            method=request.method,
            path=request.url.path,
            query=request.url.query or None,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            client_ip=request.client.host if request.client else "unknown",
        )
        return response

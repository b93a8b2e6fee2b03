"""Request timing and request logging middleware."""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from coldwatch.monitoring.metrics import record_request

logger = logging.getLogger(__name__)

# Polled by dashboards and scrapers; timed but not logged
QUIET_PATHS = frozenset({"/health", "/metrics"})

UNMATCHED_ROUTE = "unmatched"


def route_label(request: Request) -> str:
    """Route template for the request, e.g. ``/sensors/{parameter}/series``.

    Using the template keeps one latency series per endpoint rather than
    one per sensor parameter.
    """
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


def request_id_for(request: Request) -> str:
    """Reuse the caller's X-Request-ID so dashboard and API logs line up."""
    return request.headers.get("x-request-id") or str(uuid.uuid4())[:8]


class TimingMiddleware(BaseHTTPMiddleware):
    """Time each request, tag it with a request id and record its latency."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request.state.request_id = request_id_for(request)
        start = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
        response.headers["X-Request-ID"] = request.state.request_id

        route = route_label(request)
        record_request(route, response.status_code, elapsed_ms)

        if request.url.path in QUIET_PATHS:
            return response
        logger.info(
            "[%s] %s %s (%s) %d in %.2fms",
            request.state.request_id,
            request.method,
            request.url.path,
            route,
            response.status_code,
            elapsed_ms,
        )
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Debug-log each incoming chart or prediction request with its query."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path not in QUIET_PATHS:
            logger.debug(
                "Incoming: %s %s%s from %s",
                request.method,
                request.url.path,
                f"?{request.url.query}" if request.url.query else "",
                request.client.host if request.client else "unknown",
            )
        return await call_next(request)

"""Prometheus instrumentation for every HTTP request."""

from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from portal.middleware.logging import route_template
from portal.telemetry import observe_request


class TelemetryMiddleware(BaseHTTPMiddleware):
    """Count and time requests, labelled by route template."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            observe_request(
                request.method,
                route_template(request),
                status_code,
                time.perf_counter() - started,
            )

"""One JSON access-log line per request."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from portal.utils import bearer_subject

logger = logging.getLogger("portal.middleware.structured")


def route_template(request: Request) -> str:
    """Matched route pattern such as ``/groups/{group_id}``, else the raw path."""

    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, route, acting user, status and latency as compact JSON.

    Client errors log at WARNING so rejected allocation attempts (409s) stand
    out from normal traffic; server errors log at ERROR.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        started = time.perf_counter()
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "method": request.method,
            "path": request.url.path,
            "user_id": bearer_subject(request.headers.get("authorization")),
            "client_ip": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception as exc:
            entry.update(
                route=route_template(request),
                status_code=500,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=repr(exc),
            )
            logger.exception(json.dumps(entry, default=str, separators=(",", ":")))
            raise

        entry.update(
            route=route_template(request),
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        line = json.dumps(entry, default=str, separators=(",", ":"))
        if response.status_code >= 500:
            logger.error(line)
        elif response.status_code >= 400:
            logger.warning(line)
        else:
            logger.info(line)
        return response

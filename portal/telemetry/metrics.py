"""Prometheus series for HTTP traffic and allocation engine activity."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# HTTP

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests by route template and status",
    ("method", "route", "status"),
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by route template",
    ("method", "route"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

ERROR_COUNTER = Counter(
    "app_internal_errors_total",
    "Requests that ended in a 5xx response",
    ("method", "route"),
)

# Engine

DOMAIN_ERRORS = Counter(
    "portal_domain_errors_total",
    "Typed engine errors returned to callers, by error code",
    ("code",),
)

GROUP_EVENTS = Counter(
    "portal_group_events_total",
    "Group lifecycle transitions",
    ("event",),
)

APPLICATIONS_SUBMITTED = Counter(
    "portal_applications_submitted_total",
    "Application rows created by submissions",
    ("project_type",),
)

APPLICATION_DECISIONS = Counter(
    "portal_application_decisions_total",
    "Application outcomes: approved, rejected, auto_rejected, revoked",
    ("outcome",),
)

GROUP_CODE_COLLISIONS = Counter(
    "portal_group_code_collisions_total",
    "Generated group codes that were already taken",
)


def observe_request(method: str, route: str, status_code: int, seconds: float) -> None:
    route = route or "unknown"
    REQUEST_COUNT.labels(method=method, route=route, status=str(status_code)).inc()
    REQUEST_LATENCY.labels(method=method, route=route).observe(max(seconds, 0.0))
    if status_code >= 500:
        ERROR_COUNTER.labels(method=method, route=route).inc()


def record_domain_error(code: str) -> None:
    DOMAIN_ERRORS.labels(code=code).inc()


def record_group_event(event: str) -> None:
    GROUP_EVENTS.labels(event=event).inc()


def record_decision(outcome: str, amount: int = 1) -> None:
    """Count application outcomes; ``amount`` covers bulk auto-rejections."""

    if amount > 0:
        APPLICATION_DECISIONS.labels(outcome=outcome).inc(amount)

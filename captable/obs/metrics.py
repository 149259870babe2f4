"""Prometheus metrics for the API and the ownership engine."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_LATENCY_SECONDS = Histogram(
    "http_request_latency_seconds",
    "Latency of HTTP requests in seconds.",
    labelnames=("method", "path"),
)
REQUEST_COUNTER = Counter(
    "http_requests_total",
    "Total number of HTTP requests processed.",
    labelnames=("method", "path", "status"),
)
REQUEST_ERROR_COUNTER = Counter(
    "http_request_errors_total",
    "Total number of HTTP requests that resulted in server errors.",
    labelnames=("method", "path", "status"),
)
MUTATION_COUNTER = Counter(
    "ownership_mutations_total",
    "Ownership mutations processed, by command and outcome.",
    labelnames=("command", "outcome"),
)
VALIDATION_ISSUE_COUNTER = Counter(
    "ownership_validation_issues_total",
    "Validation issues raised against proposed ownership changes.",
    labelnames=("code",),
)
REQUEST_DEDUP_COUNTER = Counter(
    "ownership_request_cache_total",
    "Client-wide fetches served, suppressed or discarded by the request cache.",
    labelnames=("scope", "outcome"),
)
PERSISTENCE_LATENCY_SECONDS = Histogram(
    "persistence_request_latency_seconds",
    "Latency of calls to the persistence service in seconds.",
    labelnames=("operation", "outcome"),
)


def _route_template(request: Request) -> str:
    # Route template, never the concrete path; ids stay out of label values.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Times every request and counts it by route template and status."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            labels = {"method": request.method, "path": _route_template(request)}
            status = str(status_code)
            if status_code >= 500:
                REQUEST_ERROR_COUNTER.labels(status=status, **labels).inc()
            REQUEST_LATENCY_SECONDS.labels(**labels).observe(time.perf_counter() - started)
            REQUEST_COUNTER.labels(status=status, **labels).inc()


metrics_router = APIRouter(tags=["observability"])


@metrics_router.get("/metrics", include_in_schema=False)
def metrics_endpoint() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "MUTATION_COUNTER",
    "PERSISTENCE_LATENCY_SECONDS",
    "PrometheusMiddleware",
    "REQUEST_COUNTER",
    "REQUEST_DEDUP_COUNTER",
    "REQUEST_ERROR_COUNTER",
    "REQUEST_LATENCY_SECONDS",
    "VALIDATION_ISSUE_COUNTER",
    "metrics_endpoint",
    "metrics_router",
]

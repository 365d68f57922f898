"""Prometheus metrics middleware for FastAPI."""

import time
from collections.abc import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

# qselect_http_requests_total{method, route, status}
http_requests_total = Counter(
    "qselect_http_requests_total",
    "Total number of HTTP requests",
    ["method", "route", "status"],
)

http_request_duration_seconds = Histogram(
    "qselect_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


class PrometheusMetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests and latency per route template."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        # Route resolved during dispatch; fall back to the raw path for 404s
        route = request.scope.get("route")
        route_label = getattr(route, "path", None) or request.url.path

        http_requests_total.labels(
            method=request.method, route=route_label, status=str(response.status_code)
        ).inc()
        http_request_duration_seconds.labels(method=request.method, route=route_label).observe(elapsed)
        return response

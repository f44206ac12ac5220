"""Prometheus HTTP metrics, labelled by route template."""
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

http_request_duration_seconds = Histogram(
    "metering_http_request_duration_seconds",
    "Request latency per route",
    labelnames=["method", "route", "status_code"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

http_requests_total = Counter(
    "metering_http_requests_total",
    "Requests served per route and status",
    labelnames=["method", "route", "status_code"],
)

http_request_errors_total = Counter(
    "metering_http_request_errors_total",
    "Requests that raised out of the application",
    labelnames=["method", "route", "error_type"],
)


def _route_path(request: Request) -> str:
    """
    Full route template (``/v1/usage``) rather than the raw path, to bound
    label cardinality. Resolved against the application's routing table so
    router prefixes are included.
    """
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match is Match.FULL:
            return getattr(route, "path", None) or request.url.path
    return "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request duration, request count and unhandled errors per route."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            http_request_errors_total.labels(
                method=request.method,
                route=_route_path(request),
                error_type=type(exc).__name__,
            ).inc()
            raise

        route = _route_path(request)
        http_request_duration_seconds.labels(
            method=request.method,
            route=route,
            status_code=response.status_code,
        ).observe(time.perf_counter() - start_time)
        http_requests_total.labels(
            method=request.method,
            route=route,
            status_code=response.status_code,
        ).inc()
        return response

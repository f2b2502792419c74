"""Request metrics middleware."""
import time

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "Request latency by route",
    labelnames=["method", "route", "status_class"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 60.0],
)

http_requests_in_flight = Gauge(
    "http_requests_in_flight",
    "Requests currently being handled",
)

http_unhandled_exceptions_total = Counter(
    "http_unhandled_exceptions_total",
    "Requests that raised instead of returning a response",
    labelnames=["route", "exception"],
)


def route_template(request: Request) -> str:
    """Matched route path, e.g. ``/v1/jobs/{job_id}``; unmatched paths share one label."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Latency and error metrics per route template. Probe endpoints are not measured."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith(("/metrics", "/health")):
            return await call_next(request)

        http_requests_in_flight.inc()
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            http_unhandled_exceptions_total.labels(route=route_template(request), exception=type(exc).__name__).inc()
            raise
        finally:
            http_requests_in_flight.dec()

        http_request_duration_seconds.labels(
            method=request.method,
            route=route_template(request),
            status_class=f"{response.status_code // 100}xx",
        ).observe(time.perf_counter() - started)
        return response

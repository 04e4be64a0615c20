"""Prometheus metrics for the lifecycle core and its HTTP surface."""

from __future__ import annotations

from time import perf_counter

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


_HTTP_REQUEST_COUNT = Counter(
    "project_desk_http_requests_total",
    "Total HTTP requests processed by service",
    labelnames=("service", "method", "route", "status"),
)

_HTTP_REQUEST_LATENCY = Histogram(
    "project_desk_http_request_duration_seconds",
    "Latency of HTTP requests",
    labelnames=("service", "method", "route"),
)

_PAYMENT_EVENTS = Counter(
    "project_desk_payment_events_total",
    "Payment events by processing outcome",
    labelnames=("outcome",),
)

_MILESTONES = Counter(
    "project_desk_milestones_total",
    "Milestones appended to project histories",
    labelnames=("milestone",),
)

_LOCK_TRANSITIONS = Counter(
    "project_desk_lock_transitions_total",
    "Project lock and unlock attempts by outcome",
    labelnames=("action", "outcome"),
)

_SWITCH_REQUESTS = Counter(
    "project_desk_topic_switch_requests_total",
    "Topic switch workflow actions",
    labelnames=("action",),
)

_RECEIPTS = Counter(
    "project_desk_receipts_total",
    "Payment receipt deliveries by outcome",
    labelnames=("outcome",),
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect request metrics for FastAPI services."""

    def __init__(self, app: FastAPI, service_name: str) -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        elapsed = perf_counter() - start

        route_template = request.url.path
        route = request.scope.get("route")
        if route and getattr(route, "path", None):
            route_template = route.path  # type: ignore[assignment]

        method = request.method
        status = getattr(response, "status_code", 500)

        _HTTP_REQUEST_COUNT.labels(self.service_name, method, route_template, str(status)).inc()
        _HTTP_REQUEST_LATENCY.labels(self.service_name, method, route_template).observe(elapsed)
        return response


def setup_fastapi_metrics(app: FastAPI, service_name: str, endpoint: str = "/metrics") -> None:
    """Register Prometheus middleware and metrics endpoint for a FastAPI app."""

    if getattr(app.state, "metrics_configured", False):
        return

    app.add_middleware(PrometheusMiddleware, service_name=service_name)

    @app.get(endpoint, include_in_schema=False)
    async def _metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.state.metrics_configured = True


def observe_payment_event(outcome: str) -> None:
    """Count a payment event: ``recorded``, ``duplicate``, ``unreconciled``, ``failed``."""

    _PAYMENT_EVENTS.labels(outcome).inc()


def observe_milestone(milestone: str) -> None:
    _MILESTONES.labels(milestone).inc()


def observe_lock_transition(action: str, outcome: str = "success") -> None:
    _LOCK_TRANSITIONS.labels(action, outcome).inc()


def observe_switch_request(action: str) -> None:
    _SWITCH_REQUESTS.labels(action).inc()


def observe_receipt(outcome: str) -> None:
    _RECEIPTS.labels(outcome).inc()

"""
Prometheus metrics middleware for the chat API.

Exposes /metrics endpoint with request counters, latency histograms,
and chat sync metrics.
"""

import logging
import time

from fastapi import Request, Response
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST,
)
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "chat_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "chat_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)
ACTIVE_REQUESTS = Gauge(
    "chat_http_active_requests",
    "Currently active HTTP requests",
)

# Chat sync metrics
REALTIME_CONNECTIONS = Gauge(
    "chat_realtime_connections",
    "Open realtime store WebSocket connections",
)
MESSAGES_APPENDED = Counter(
    "chat_messages_appended_total",
    "Messages appended to conversations",
    ["sender"],
)
READ_UPDATES = Counter(
    "chat_read_updates_total",
    "Per-message read flag updates acknowledged",
)
DISCONNECT_ACTIONS = Counter(
    "chat_on_disconnect_actions_total",
    "On-disconnect writes applied after a client dropped",
)


def record_message_appended(sender: str):
    MESSAGES_APPENDED.labels(sender=sender).inc()


def record_read_updates(count: int):
    if count:
        READ_UPDATES.inc(count)


def record_realtime_connect():
    REALTIME_CONNECTIONS.inc()


def record_realtime_disconnect(actions_applied: int):
    REALTIME_CONNECTIONS.dec()
    if actions_applied:
        DISCONNECT_ACTIONS.inc(actions_applied)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        except Exception:
            ACTIVE_REQUESTS.dec()
            raise

        duration = time.time() - start
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)
        ACTIVE_REQUESTS.dec()

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )

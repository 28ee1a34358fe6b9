from __future__ import annotations

"""Prometheus metrics for the WeatherVis FastAPI backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus relay counters for the chat-tip stream.
"""

import logging
import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

LOG = logging.getLogger("weathervis.metrics")

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "weathervis_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

# One increment per relay session, labelled by how it ended
CHAT_TIP_SESSIONS = Counter(
    "weathervis_chat_tip_sessions_total",
    "Chat-tip relay sessions by terminal outcome",
    labelnames=("outcome",),
)

CHAT_TIP_FRAGMENTS = Counter(
    "weathervis_chat_tip_fragments_total",
    "Text fragments relayed to chat-tip clients",
)

LOG_WRITE_FAILURES = Counter(
    "weathervis_log_write_failures_total",
    "Request log writes that failed and were dropped",
    labelnames=("collection",),
)


def sanitize_path(path: str) -> str:
    """Reduce paths to their first segment, skipping the ``/api`` alias prefix."""
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if segs and segs[0] == "api":
        segs = segs[1:]
    if not segs:
        return "/"
    return "/" + segs[0]


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if sanitize_path(request.url.path) == "/metrics":
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never fail the request over metrics
            LOG.debug("request_latency_observe_failed", exc_info=True)
        return response

    return middleware

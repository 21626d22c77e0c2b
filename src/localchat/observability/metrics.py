from __future__ import annotations

"""Prometheus metrics for the localchat FastAPI backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for chat turn outcomes and SSE heartbeats.
"""

import logging
import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "localchat_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 120.0),
)

GENERATION_OUTCOMES = Counter(
    "localchat_generation_outcomes_total",
    "Chat turns by transport mode and final outcome",
    labelnames=("mode", "outcome"),
)

STREAM_HEARTBEATS = Counter(
    "localchat_stream_heartbeats_total",
    "SSE keep-alive comments written while waiting on the backend",
)


def sanitize_path(path: str) -> str:
    """Collapse ids out of the path label: /api/sessions/abc -> /api/sessions."""
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    if segs[0] == "api":
        return "/" + "/".join(segs[:2])
    return "/" + segs[0]


def record_outcome(mode: str, outcome: str) -> None:
    GENERATION_OUTCOMES.labels(mode=mode, outcome=outcome).inc()


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.startswith("/metrics"):
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
        except ValueError as exc:
            logger.debug("request_latency_not_recorded", extra={"err": str(exc)})
        return response

    return middleware

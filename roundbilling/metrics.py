from __future__ import annotations

import time
from typing import Callable, Optional

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

from roundbilling.core.settings import S

METRICS_ENABLED = S.metrics_enabled

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
ROUND_EVENTS = Counter(
    "round_events_total",
    "Round events processed, by outcome",
    ["outcome"],
)
ROUND_ANOMALIES = Counter(
    "round_fee_anomalies_total",
    "Round events whose claims disagree with the ledger",
    ["kind"],
)
LEDGER_WRITES = Counter(
    "ledger_writes_total",
    "Ledger debit appends",
    ["status"],
)
TOKENS_CHARGED = Counter(
    "round_tokens_charged_total",
    "Tokens debited for rounds",
)
STORE_LATENCY = Histogram(
    "ledger_store_call_duration_seconds",
    "Ledger store round trip latency in seconds",
    ["op"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)
UPTIME_SECONDS = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)
APP_INFO = Info(
    "app",
    "Application metadata",
)

_START_TIME = time.monotonic()


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    if route and getattr(route, "path", None):
        return route.path
    return request.url.path


def record_outcome(outcome: str, anomaly: Optional[str] = None) -> None:
    ROUND_EVENTS.labels(outcome=outcome).inc()
    if anomaly:
        ROUND_ANOMALIES.labels(kind=anomaly).inc()


def record_ledger_write(ok: bool, cost: int = 0) -> None:
    LEDGER_WRITES.labels(status="ok" if ok else "failed").inc()
    if ok and cost > 0:
        TOKENS_CHARGED.inc(cost)


async def metrics_middleware(request: Request, call_next: Callable[[Request], Response]) -> Response:
    path = _route_path(request)
    method = request.method
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        REQUEST_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - start)
        REQUEST_COUNT.labels(method=method, path=path, status=str(status_code)).inc()


def set_app_info(name: str, version: str) -> None:
    APP_INFO.info({"name": name, "version": version})


def metrics_endpoint() -> Response:
    UPTIME_SECONDS.set(time.monotonic() - _START_TIME)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

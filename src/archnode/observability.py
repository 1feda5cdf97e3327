from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable

from fastapi import FastAPI, Request
from prometheus_client import Counter, Histogram

_HTTP_REQUESTS_TOTAL = Counter(
    "archnode_http_requests_total",
    "HTTP requests served by the node agent",
    labelnames=["component", "method", "route", "status"],
)
_HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "archnode_http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["component", "method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str) -> None:
    resolved = getattr(logging, str(level or "").upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    # Our middleware already logs every request with its id.
    logging.getLogger("uvicorn.access").setLevel(max(resolved, logging.WARNING))


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if isinstance(path, str) and path:
        return path
    return request.url.path or "/"


def _record(component: str, method: str, route: str, status_code: int, elapsed: float) -> None:
    _HTTP_REQUESTS_TOTAL.labels(component, method, route, str(status_code)).inc()
    _HTTP_REQUEST_DURATION_SECONDS.labels(component, method, route).observe(elapsed)


def install_http_observability(
    app: FastAPI,
    *,
    component: str,
    quiet_routes: Iterable[str] = ("/metrics",),
) -> None:
    """
    Count, time and log every request.

    Requests to `quiet_routes` (scrapes, probes) are logged at DEBUG so they do
    not drown out config and manager writes.
    """
    logger = logging.getLogger(f"archnode.{component}.http")
    quiet = frozenset(quiet_routes)

    @app.middleware("http")
    async def _archnode_http_observer(request: Request, call_next):  # noqa: ANN001, ANN202
        request_id = (request.headers.get("x-request-id") or "").strip() or uuid.uuid4().hex[:16]
        started = time.perf_counter()
        method = request.method.upper()

        try:
            response = await call_next(request)
        except Exception:
            elapsed = max(0.0, time.perf_counter() - started)
            route = _route_label(request)
            _record(component, method, route, 500, elapsed)
            logger.exception(
                "request_failed method=%s route=%s duration_ms=%.2f request_id=%s",
                method,
                route,
                elapsed * 1000,
                request_id,
            )
            raise

        elapsed = max(0.0, time.perf_counter() - started)
        route = _route_label(request)
        status_code = int(response.status_code)
        _record(component, method, route, status_code, elapsed)

        response.headers.setdefault("x-request-id", request_id)
        logger.log(
            logging.DEBUG if route in quiet else logging.INFO,
            "request method=%s route=%s status=%s duration_ms=%.2f request_id=%s",
            method,
            route,
            status_code,
            elapsed * 1000,
            request_id,
        )
        return response

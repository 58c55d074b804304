"""
Flask middleware for request logging and metrics.

Each request gets a request id (taken from ``X-Request-ID`` when supplied),
a logging context carrying the id, method, path and caller address, and a
counter/histogram sample on completion.
"""

import logging
import time
import uuid

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, set_request_context
from monitoring.metrics import metrics

CALLER_HEADER = "X-Caller-Address"

logger = logging.getLogger("escrow.request")


def setup_request_logging(app: Flask) -> None:
    """Install before/after/teardown hooks on ``app``."""

    @app.before_request
    def before_request():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        g.start_time = time.perf_counter()
        set_request_context(
            request_id=g.request_id,
            method=request.method,
            path=request.path,
            caller=request.headers.get(CALLER_HEADER),
        )

    @app.after_request
    def after_request(response: Response) -> Response:
        _record_request(response.status_code)
        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.teardown_request
    def teardown_request(exception=None):
        if exception:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={"request_id": getattr(g, "request_id", "unknown")},
            )
        clear_request_context()


def _record_request(status_code: int) -> None:
    duration_ms = 0.0
    if hasattr(g, "start_time"):
        duration_ms = (time.perf_counter() - g.start_time) * 1000

    endpoint = _normalize_path(request.path)
    metrics.increment(
        "http_requests_total",
        labels={"method": request.method, "endpoint": endpoint, "status": str(status_code)},
    )
    metrics.timing(
        "http_request_duration_ms",
        duration_ms,
        labels={"method": request.method, "endpoint": endpoint},
    )

    level = logging.INFO
    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    logger.log(
        level,
        "%s %s -> %d", request.method, request.path, status_code,
        extra={"status_code": status_code, "duration_ms": round(duration_ms, 2)},
    )


def _normalize_path(path: str) -> str:
    """
    Collapse dynamic path segments so metric labels stay low-cardinality.

    /escrows/17/release          -> /escrows/:id/release
    /arbitrators/0xab.../blacklist -> /arbitrators/:address/blacklist
    """
    parts = []
    for part in path.strip("/").split("/"):
        if part.isdigit():
            parts.append(":id")
        elif part.lower().startswith("0x") and len(part) > 2:
            parts.append(":address")
        else:
            parts.append(part)
    return "/" + "/".join(p for p in parts if p)

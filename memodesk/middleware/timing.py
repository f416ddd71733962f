"""
Per-request correlation id and duration for the memo API.

Every response carries ``X-Request-ID`` (echoed from the caller when given)
and ``X-Request-Duration-Ms``. The request log line names the memo the route
acted on, so a slow workflow call or a 5xx can be matched to its memo.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/api/v1/health"})
SLOW_REQUEST_MS = 1000


def _log_level(status_code: int, duration_ms: float) -> tuple[int, str]:
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING, "Slow memo request"
    if status_code >= 500:
        return logging.ERROR, "Memo request failed"
    return logging.DEBUG, "Memo request"


def init_request_timing(app: Flask):
    """Attach the correlation-id and duration hooks to ``app``."""

    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _record_request(response):
        started = getattr(g, "request_started", None)
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        request_id = getattr(g, "request_id", "")
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if request.path in QUIET_PATHS:
            return response

        level, message = _log_level(response.status_code, elapsed_ms)
        logger.log(
            level,
            "%s: %s %s -> %d (%.0fms)",
            message, request.method, request.path, response.status_code, elapsed_ms,
            extra={
                "request_id": request_id,
                "memo_id": (request.view_args or {}).get("memo_id"),
                "actor_id": request.headers.get("X-Actor-Id"),
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": round(elapsed_ms, 1),
            },
        )
        return response

"""
Request timing.

Every response carries ``X-Request-ID`` (echoed from the caller when sent)
and ``X-Request-Duration-Ms``. Requests over the slow threshold are logged
at WARNING; bulk derivation routes get a larger threshold since they walk
the whole portfolio.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000
SLOW_BULK_THRESHOLD_MS = 10_000

_QUIET_PATHS = frozenset({"/api/health", "/api/health/ready"})
_BULK_PREFIXES = ("/api/derive/", "/api/capability/derive-all", "/api/value/derive-all",
                  "/api/recalculate-scores")


def _threshold_for(path: str) -> int:
    return SLOW_BULK_THRESHOLD_MS if path.startswith(_BULK_PREFIXES) else SLOW_THRESHOLD_MS


def init_request_timing(app: Flask):

    @app.before_request
    def _start_clock():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _stamp_and_log(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"
        if request.path in _QUIET_PATHS:
            return response

        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": elapsed_ms,
            "remote_addr": request.remote_addr,
        }
        if response.status_code >= 500:
            level, label = logging.ERROR, "Server error"
        elif elapsed_ms > _threshold_for(request.path):
            level, label = logging.WARNING, "Slow request"
        else:
            level, label = logging.DEBUG, "Request"
        logger.log(level, "%s: %s %s %d", label, request.method, request.path,
                   response.status_code, extra=extra)
        return response

"""
Request id and access logging.

Each request gets an id, taken from a well-formed inbound ``X-Request-ID``
header or generated. The id is echoed back on the response, attached to
log records by the logging filter, and written to every audit entry made
during the request. Completed requests are logged at DEBUG, or at WARNING
once they exceed SLOW_REQUEST_MS.
"""

import logging
import re
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

# Fits sheet_audit_entries.request_id
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

_UNLOGGED_BLUEPRINTS = frozenset({"health"})


def _inbound_request_id() -> str:
    candidate = request.headers.get("X-Request-ID", "").strip()
    if candidate and _REQUEST_ID_RE.match(candidate):
        return candidate
    return uuid.uuid4().hex[:16]


def init_request_timing(app: Flask):
    """Register the before/after hooks that stamp and log each request."""

    @app.before_request
    def _begin_request():
        g.request_started = time.perf_counter()
        g.request_id = _inbound_request_id()

    @app.after_request
    def _finish_request(response):
        started = g.get("request_started")
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if request.blueprint in _UNLOGGED_BLUEPRINTS:
            return response

        view_args = request.view_args or {}
        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 1),
            "remote_addr": request.remote_addr,
            "sheet_key": view_args.get("sheet_key"),
            "row_id": view_args.get("row_id"),
        }
        slow_ms = current_app.config.get("SLOW_REQUEST_MS", 1000)
        if response.status_code >= 500:
            level = logging.ERROR
        elif elapsed_ms > slow_ms:
            level = logging.WARNING
        else:
            level = logging.DEBUG
        logger.log(level, "%s %s -> %d in %.0fms",
                   request.method, request.path, response.status_code, elapsed_ms, extra=extra)
        return response

"""
Request timing middleware.

Assigns / propagates X-Request-ID, records request duration and logs every
API request with its scope.  Adds X-Request-Duration-Ms to all responses.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_SKIP_LOG = frozenset({"/api/v1/health"})

# Slow request threshold (ms)
SLOW_THRESHOLD_MS = 1000


def _extract_scope() -> tuple[str | None, str | None]:
    view_args = request.view_args or {}
    project_id = view_args.get("project_id") or request.args.get("project_id")
    period_id = view_args.get("period_id") or request.args.get("period_id")
    if project_id is None or period_id is None:
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            project_id = project_id or payload.get("project_id")
            period_id = period_id or payload.get("period_id")
    return project_id, period_id


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:12])

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = getattr(g, "request_id", "")

        if request.path in _SKIP_LOG or not request.path.startswith("/api/"):
            return response

        project_id, period_id = _extract_scope()
        actor = getattr(g, "actor", None)
        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "request_id": getattr(g, "request_id", ""),
            "project_id": project_id,
            "period_id": period_id,
            "actor_role": actor.role.value if actor else None,
        }
        if duration_ms > SLOW_THRESHOLD_MS:
            logger.warning("Slow request: %s %s %d (%.0fms)",
                           request.method, request.path,
                           response.status_code, duration_ms, extra=extra)
        elif response.status_code >= 500:
            logger.error("Server error: %s %s %d (%.0fms)",
                         request.method, request.path,
                         response.status_code, duration_ms, extra=extra)
        else:
            logger.info("Request: %s %s %d (%.0fms)",
                        request.method, request.path,
                        response.status_code, duration_ms, extra=extra)

        return response

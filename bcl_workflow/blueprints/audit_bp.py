"""
Audit Blueprint — read-only access to approval snapshots.

Endpoints:
    GET /api/v1/snapshots
        Query params: project_id, period_id (filters), cursor (offset from a
        previous page's next_cursor), limit (default SNAPSHOT_PAGE_SIZE,
        capped at SNAPSHOT_PAGE_MAX)
        Returns: {"items": [...], "next_cursor": int|null, "count": int}
    GET /api/v1/snapshots/<snapshot_id>
        Returns: the snapshot, or 404
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from bcl_workflow.blueprints import get_gateway, register_error_handlers
from bcl_workflow.middleware.actor_context import current_actor
from bcl_workflow.utils.helpers import parse_int_arg

logger = logging.getLogger(__name__)

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")
register_error_handlers(audit_bp)


@audit_bp.route("/snapshots", methods=["GET"])
def list_snapshots():
    actor = current_actor()
    page_size = current_app.config.get("SNAPSHOT_PAGE_SIZE", 50)
    page_max = current_app.config.get("SNAPSHOT_PAGE_MAX", 200)
    page = get_gateway().list_snapshots(
        actor,
        project_id=request.args.get("project_id") or None,
        period_id=request.args.get("period_id") or None,
        cursor=parse_int_arg(request.args.get("cursor"), "cursor", default=0),
        limit=parse_int_arg(request.args.get("limit"), "limit", default=page_size, minimum=1, maximum=page_max),
    )
    return jsonify(page), 200


@audit_bp.route("/snapshots/<snapshot_id>", methods=["GET"])
def get_snapshot(snapshot_id: str):
    return jsonify(get_gateway().get_snapshot(current_actor(), snapshot_id)), 200

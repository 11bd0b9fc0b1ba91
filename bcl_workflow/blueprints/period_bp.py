"""
Period Blueprint — weekly window lookup and health check.

Endpoints:
    GET /api/v1/periods/window
        Query params: anchor (weekday, default WEEK_ANCHOR), back, forward
        (neighbouring windows, max 52 each), now (ISO-8601 instant, default
        current time)
    GET /api/v1/health
"""

from flask import Blueprint, jsonify, request

from bcl_workflow.blueprints import get_gateway, register_error_handlers
from bcl_workflow.utils.helpers import parse_datetime, parse_int_arg

period_bp = Blueprint("period", __name__, url_prefix="/api/v1")
register_error_handlers(period_bp)

MAX_NEIGHBOUR_WEEKS = 52


@period_bp.route("/periods/window", methods=["GET"])
def current_window():
    result = get_gateway().current_window(
        parse_datetime(request.args.get("now")),
        anchor=request.args.get("anchor"),
        back_weeks=parse_int_arg(request.args.get("back"), "back", default=0, maximum=MAX_NEIGHBOUR_WEEKS),
        forward_weeks=parse_int_arg(request.args.get("forward"), "forward", default=0, maximum=MAX_NEIGHBOUR_WEEKS),
    )
    return jsonify(result), 200


@period_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "app": "BCL Scoring Workflow"}), 200

"""
Workflow Blueprint — evidence, reviews and period decisions.

Endpoints:
    POST   /api/v1/evidences                         save a DRAFT (201)
    POST   /api/v1/evidences/submit                  submit evidence (201)
    POST   /api/v1/evidences/<id>/resubmit           NEEDS_REVISION → SUBMITTED
    GET    /api/v1/evidences/<id>                    item + effective status + reviews
    POST   /api/v1/evidences/<id>/reviews            Body: {"outcome", "reason", "version"} (201)
    GET    /api/v1/evidences/<id>/reviews            review ledger
    POST   /api/v1/projects/<pid>/periods/<period>/decisions
           Body: {"decision", "reason", "version", "score_input"?} (201)
    GET    /api/v1/projects/<pid>/periods/<period>   status, lock, decisions, evidence

Every request carries X-Actor-Role / X-Actor-Id; writes may carry
X-Idempotency-Scope.  Writes to existing state carry the "version" the
caller last read (evidence version, or the period version for decisions).
All business guards live in the write gateway.
"""

import logging

from flask import Blueprint, jsonify

from bcl_workflow.blueprints import get_gateway, idempotency_scope, json_body, register_error_handlers
from bcl_workflow.middleware.actor_context import current_actor

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


# ── Evidence ──────────────────────────────────────────────────────────────────


@workflow_bp.route("/evidences", methods=["POST"])
def save_evidence_draft():
    result = get_gateway().save_evidence_draft(
        current_actor(), json_body(), idempotency_scope=idempotency_scope(),
    )
    return jsonify(result), 201


@workflow_bp.route("/evidences/submit", methods=["POST"])
def submit_evidence():
    result = get_gateway().submit_evidence(
        current_actor(), json_body(), idempotency_scope=idempotency_scope(),
    )
    return jsonify(result), 201


@workflow_bp.route("/evidences/<evidence_id>/resubmit", methods=["POST"])
def resubmit_evidence(evidence_id: str):
    result = get_gateway().resubmit_evidence(
        current_actor(), evidence_id, json_body(), idempotency_scope=idempotency_scope(),
    )
    return jsonify(result), 200


@workflow_bp.route("/evidences/<evidence_id>", methods=["GET"])
def get_evidence(evidence_id: str):
    return jsonify(get_gateway().get_evidence_view(current_actor(), evidence_id)), 200


# ── Reviews ───────────────────────────────────────────────────────────────────


@workflow_bp.route("/evidences/<evidence_id>/reviews", methods=["POST"])
def apply_review(evidence_id: str):
    """Append a review; the reviewer identity is the calling actor."""
    data = json_body()
    if not isinstance(data, dict):
        data = {}
    result = get_gateway().apply_review(
        current_actor(),
        evidence_id,
        data.get("outcome"),
        data.get("reason"),
        version=data.get("version"),
        idempotency_scope=idempotency_scope(),
    )
    return jsonify(result), 201


@workflow_bp.route("/evidences/<evidence_id>/reviews", methods=["GET"])
def list_reviews(evidence_id: str):
    return jsonify(get_gateway().get_review_ledger(current_actor(), evidence_id)), 200


# ── Period decisions ──────────────────────────────────────────────────────────


@workflow_bp.route("/projects/<project_id>/periods/<period_id>/decisions", methods=["POST"])
def decide_approval(project_id: str, period_id: str):
    """APPROVE_PERIOD locks the period and returns its snapshot."""
    data = json_body()
    if not isinstance(data, dict):
        data = {}
    result = get_gateway().decide_approval(
        current_actor(),
        project_id,
        period_id,
        data.get("decision"),
        data.get("reason"),
        score_input=data.get("score_input"),
        version=data.get("version"),
        idempotency_scope=idempotency_scope(),
    )
    return jsonify(result), 201


@workflow_bp.route("/projects/<project_id>/periods/<period_id>", methods=["GET"])
def get_period(project_id: str, period_id: str):
    return jsonify(get_gateway().get_period_view(current_actor(), project_id, period_id)), 200

"""
BCL Scoring Workflow
Blueprint registry and shared helpers for the HTTP adapters.

Blueprints are thin: parse the request, call the write gateway, return JSON.
Conditions raised by the engine are mapped to HTTP statuses in one place
(``register_error_handlers``).
"""

import logging

from flask import current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from bcl_workflow.core.exceptions import NotFoundError, WorkflowError
from bcl_workflow.services.write_gateway import WriteGateway
from bcl_workflow.utils.errors import E, api_error, workflow_error_response

logger = logging.getLogger(__name__)

GATEWAY_EXTENSION = "workflow_gateway"


def get_gateway() -> WriteGateway:
    return current_app.extensions[GATEWAY_EXTENSION]


def json_body() -> dict:
    """Request JSON; an absent or unparseable body reads as ``{}``."""
    data = request.get_json(silent=True)
    return {} if data is None else data


def idempotency_scope() -> str | None:
    return getattr(g, "idempotency_scope", None)


def register_error_handlers(bp):
    """Attach the condition → HTTP mapping to a blueprint."""

    @bp.errorhandler(WorkflowError)
    def _handle_workflow_error(error: WorkflowError):
        return workflow_error_response(error)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error", "code": E.INTERNAL}), 500

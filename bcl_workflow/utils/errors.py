"""Standardised API error responses.

Usage
-----
    from bcl_workflow.utils.errors import api_error, workflow_error_response, E

    return api_error(E.NOT_FOUND, "Snapshot not found")
    return workflow_error_response(exc)      # exc: WorkflowError
"""

from __future__ import annotations

from flask import jsonify

from bcl_workflow.core.exceptions import AuthorizationError, Condition, WorkflowError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_ prefix for every code
     • one code family per Condition
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Authorization – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN_ROLE = "ERR_FORBIDDEN_ROLE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"

    # Locked – HTTP 423
    PERIOD_LOCKED = "ERR_PERIOD_LOCKED"

    # Server – HTTP 503 / 500
    UNAVAILABLE = "ERR_BACKEND_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN_ROLE: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_VERSION: 409,
    E.PERIOD_LOCKED: 423,
    E.UNAVAILABLE: 503,
    E.INTERNAL: 500,
}

_CONDITION_CODE: dict[Condition, str] = {
    Condition.VALIDATION: E.VALIDATION_INVALID,
    Condition.AUTHORIZATION: E.FORBIDDEN_ROLE,
    Condition.CONFLICT: E.CONFLICT_VERSION,
    Condition.LOCKED: E.PERIOD_LOCKED,
    Condition.UNAVAILABLE: E.UNAVAILABLE,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    condition: str | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (versions, scope, failing gates, etc.).
    condition : str, optional
        Workflow condition value, echoed so clients need not parse ``code``.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if condition:
        body["condition"] = condition
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_code_for(exc: WorkflowError) -> str:
    """Pick the ``E.*`` code for a workflow error."""
    if isinstance(exc, AuthorizationError) and exc.missing_identity:
        return E.UNAUTHORIZED
    return _CONDITION_CODE[exc.condition]


def workflow_error_response(exc: WorkflowError):
    """Map a ``WorkflowError`` onto its transport-level response."""
    code = error_code_for(exc)
    return api_error(code, exc.detail, details=exc.details, condition=exc.condition.value)


def classify_issue(
    status: int | None = None,
    code: str | None = None,
    message: str | None = None,
) -> Condition | None:
    """Map a transport-level failure back to a workflow condition.

    Used by callers deciding whether a failed call may be retried.  A missing
    status means no response arrived at all.  Returns ``None`` when the
    failure fits none of the conditions.
    """
    code_u = (code or "").upper()
    message_u = (message or "").upper()

    if status in (401, 403) or "FORBIDDEN" in code_u or "UNAUTHORIZED" in code_u:
        return Condition.AUTHORIZATION
    if status == 423 or "LOCKED" in code_u or "PERIOD_LOCKED" in message_u:
        return Condition.LOCKED
    if status == 409 or "CONFLICT" in code_u:
        return Condition.CONFLICT
    if status == 400 or "VALIDATION" in code_u or "BAD_REQUEST" in code_u:
        return Condition.VALIDATION
    if status is None or status >= 500 or "BACKEND NOT AVAILABLE" in message_u:
        return Condition.UNAVAILABLE
    return None

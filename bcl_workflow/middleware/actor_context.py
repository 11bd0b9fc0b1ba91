"""
Actor Context Middleware — resolves the calling role actor from headers.

Headers:
    X-Actor-Role         submitter / reviewer / approver / auditor / admin
                         (aliases role1, role2, role3, viewer accepted)
    X-Actor-Id           caller identity
    X-Idempotency-Scope  optional override of the operation's default scope

Authentication itself happens upstream; this middleware only normalises the
values it forwards.  It does NOT block requests without headers: endpoints
that need an actor call ``current_actor()``, which raises the recorded
``AuthorizationError``.

Chain order:
  timing.py  →  actor_context.py  →  route handler
"""

import logging

from flask import g, request

from bcl_workflow.core.exceptions import AuthorizationError
from bcl_workflow.services.write_gateway import Actor

logger = logging.getLogger(__name__)

ROLE_HEADER = "X-Actor-Role"
IDENTITY_HEADER = "X-Actor-Id"
SCOPE_HEADER = "X-Idempotency-Scope"


def init_actor_context(app):
    """Register actor context middleware as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None
        g.actor_error = None
        g.idempotency_scope = None

        if not request.path.startswith("/api/v1/"):
            return None

        g.idempotency_scope = (request.headers.get(SCOPE_HEADER) or "").strip() or None
        try:
            g.actor = Actor.from_raw(
                request.headers.get(ROLE_HEADER),
                request.headers.get(IDENTITY_HEADER),
            )
        except AuthorizationError as exc:
            g.actor_error = exc
        return None


def current_actor() -> Actor:
    """Actor of the current request, or the reason there is none."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return actor
    error = getattr(g, "actor_error", None)
    if error is not None:
        raise error
    raise AuthorizationError("Actor role and identity are required", missing_identity=True)

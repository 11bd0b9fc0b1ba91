"""
BCL Scoring Workflow
Flask Application Factory.

Usage:
    from bcl_workflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
    app = create_app("testing", store=InMemoryWorkflowStore())
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS

from bcl_workflow.config import config
from bcl_workflow.middleware.actor_context import init_actor_context
from bcl_workflow.middleware.logging_config import configure_logging
from bcl_workflow.middleware.timing import init_request_timing
from bcl_workflow.models import db
from bcl_workflow.services.store import InMemoryWorkflowStore, WorkflowStore
from bcl_workflow.services.write_gateway import WriteGateway

logger = logging.getLogger(__name__)


def _build_store(app: Flask) -> WorkflowStore:
    """Store named by WORKFLOW_STORE; the SQL store gets its tables created."""
    kind = (app.config.get("WORKFLOW_STORE") or "memory").strip().lower()
    if kind == "memory":
        return InMemoryWorkflowStore()
    if kind != "sql":
        raise RuntimeError(f"Unknown WORKFLOW_STORE '{kind}' (expected 'memory' or 'sql')")

    from bcl_workflow.models import workflow as _workflow_models  # noqa: F401
    from bcl_workflow.services.sql_store import SqlAlchemyWorkflowStore

    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(os.path.dirname(uri[len("sqlite:///"):]) or ".", exist_ok=True)

    # CREATE IF NOT EXISTS; schema changes beyond that are out of band
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")
    return SqlAlchemyWorkflowStore()


def create_app(config_name=None, store=None, **gateway_options):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        store: Workflow store to inject.  Built from WORKFLOW_STORE when None.
        gateway_options: Extra WriteGateway keyword arguments (clock,
                     score_provider).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # ProductionConfig checks DATABASE_URL on construction
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Workflow engine ──────────────────────────────────────────────────
    if store is None:
        store = _build_store(app)
    app.extensions["workflow_gateway"] = WriteGateway.from_config(store, app.config, **gateway_options)

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_actor_context(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from bcl_workflow.blueprints.audit_bp import audit_bp
    from bcl_workflow.blueprints.period_bp import period_bp
    from bcl_workflow.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(period_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("current-week")
    @click.option("--anchor", default=None, help="Anchor weekday (default: WEEK_ANCHOR).")
    def current_week_cmd(anchor):
        """Print the current weekly window and its custom week number."""
        info = app.extensions["workflow_gateway"].current_window(anchor=anchor)
        click.echo(
            f"{info['window']['label']} "
            f"(week {info['week']} of {info['week_year']}, anchor {info['anchor']}, "
            f"UTC{info['utc_offset_hours']:+d})"
        )

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    return app

"""
Shared pytest fixtures for the BCL workflow test suite.

Provides:
    - app: Flask application in testing config (session-scoped)
    - _setup_db: SQL table creation/teardown (session-scoped)
    - session: Per-test app context w/ rollback + recreate (autouse)
    - clock: Controllable UTC clock injected into every manager
    - store: Fresh in-memory workflow store
    - gateway: Write gateway on ``store``, installed into the app
    - client: Flask test client
    - submitter / reviewer / approver / auditor: role actors
"""

from datetime import datetime, timedelta, timezone

import pytest

from bcl_workflow import create_app
from bcl_workflow.blueprints import GATEWAY_EXTENSION
from bcl_workflow.models import db as _db
from bcl_workflow.models import workflow as _workflow_models  # noqa: F401
from bcl_workflow.services.store import InMemoryWorkflowStore
from bcl_workflow.services.write_gateway import Actor, WriteGateway

# Wednesday 2026-02-11 10:00 at UTC+7
START_INSTANT = datetime(2026, 2, 11, 3, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock; each call returns the current instant then ticks one second."""

    def __init__(self, start: datetime = START_INSTANT):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store():
    return InMemoryWorkflowStore()


@pytest.fixture()
def gateway(app, store, clock):
    """Gateway on a fresh store, also served by the HTTP blueprints."""
    gw = WriteGateway.from_config(store, app.config, clock=clock)
    previous = app.extensions.get(GATEWAY_EXTENSION)
    app.extensions[GATEWAY_EXTENSION] = gw
    yield gw
    app.extensions[GATEWAY_EXTENSION] = previous


@pytest.fixture()
def submitter():
    return Actor.from_raw("role1", "sam.submitter")


@pytest.fixture()
def reviewer():
    return Actor.from_raw("role2", "rita.reviewer")


@pytest.fixture()
def approver():
    return Actor.from_raw("role3", "andi.approver")


@pytest.fixture()
def auditor():
    return Actor.from_raw("viewer", "olga.auditor")

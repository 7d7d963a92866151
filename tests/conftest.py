"""
Shared pytest fixtures for the SDLC governance test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_project / make_document: row factories
"""

import pytest

from sdlc_governance import create_app
from sdlc_governance.models import db as _db
from sdlc_governance.models.auth import User
from sdlc_governance.models.document import Document
from sdlc_governance.models.project import Project
from sdlc_governance.services import hooks, round_locks, signature_service
from sdlc_governance.services import notification


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
    # Restore the default notification wiring and forget per-round locks
    hooks.clear()
    notification.reset()
    notification.register_default_handlers()
    round_locks.reset()
    signature_service.set_gateway(None)


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(name=None, role="APPROVER", email=None):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            role=role,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def requester(make_user):
    return make_user(name="Rita Requester", role="REQUESTER")


@pytest.fixture()
def make_project(requester):
    counter = {"n": 0}

    def _make(status="Initiative Submitted", code=None):
        counter["n"] += 1
        project = Project(
            code=code or f"PRJ-{counter['n']:03d}",
            title=f"Initiative {counter['n']}",
            status=status,
            owner_id=requester.id,
        )
        _db.session.add(project)
        _db.session.commit()
        return project

    return _make


@pytest.fixture()
def project(make_project):
    return make_project()


@pytest.fixture()
def make_document(project, requester):
    def _make(filename="brd.pdf", project_id=None):
        doc = Document(
            project_id=project_id or project.id,
            type="BRD",
            filename=filename,
            lifecycle_step=project.status,
            created_by_id=requester.id,
        )
        _db.session.add(doc)
        _db.session.commit()
        return doc

    return _make


@pytest.fixture()
def document(make_document):
    return make_document()


@pytest.fixture()
def approvers(make_user):
    """Three approvers A, B, C."""
    return [make_user(name=n) for n in ("Alice", "Bob", "Carol")]

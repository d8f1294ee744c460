"""
Shared pytest fixtures for the worksync test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context + table recreate (autouse)
    - client: Flask test client
    - store / indexed_store: DocumentStore without / with composite indexes
    - clock: FixedClock pinned to NOW
    - run: runs a coroutine to completion (asyncio.run)
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from worksync import create_app
from worksync.integrations.document_store import DocumentStore
from worksync.models import db as _db

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

NOTIFICATION_INDEX = "notifications:recipientUid:timestamp"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def iso(moment):
    return moment.isoformat()


def task_fields(title, *, created=None, **extra):
    """Wire fields of a work item; ``created`` pins createdAt for ordering."""
    fields = {
        "title": title,
        "description": "",
        "dueDate": None,
        "priority": "medium",
        "status": "todo",
        "projectId": None,
        "assignedTo": [],
        "watchers": [],
        "checklist": [],
        "tags": [],
        "userId": "u0",
    }
    if created is not None:
        fields["createdAt"] = iso(created)
    fields.update(extra)
    return fields


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


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def store():
    """Store with no composite indexes: filtered + ordered listens fall back."""
    return DocumentStore()


@pytest.fixture()
def indexed_store():
    return DocumentStore(composite_indexes=[NOTIFICATION_INDEX])


@pytest.fixture()
def clock():
    return FixedClock()


@pytest.fixture()
def run():
    """Run a coroutine inside the current app context."""
    return asyncio.run

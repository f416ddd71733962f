"""
Shared pytest fixtures for the Memo Desk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - creator / other_staff / desk_head / leo: seeded actors
    - store: fresh in-memory attachment store for the test
    - failing_store: factory for a store that fails the N-th upload
    - make_memo: create a DRAFT memo through the service
"""

import threading
from datetime import date

import pytest

from memodesk import create_app
from memodesk.integrations.attachment_store import AttachmentStoreError, InMemoryAttachmentStore
from memodesk.models import db as _db
from memodesk.models.auth import ROLE_DESK_HEAD, ROLE_LEO, ROLE_STAFF, User


class FailingAttachmentStore(InMemoryAttachmentStore):
    """In-memory store whose ``fail_on``-th upload call raises."""

    def __init__(self, fail_on: int) -> None:
        super().__init__()
        self.fail_on = fail_on
        self.calls = 0
        self.deleted: list[str] = []
        self._counter_lock = threading.Lock()

    def upload(self, content: bytes, metadata: dict) -> str:
        with self._counter_lock:
            self.calls += 1
            call = self.calls
        if call == self.fail_on:
            raise AttachmentStoreError("storage backend unavailable")
        return super().upload(content, metadata)

    def delete(self, file_id: str) -> None:
        self.deleted.append(file_id)
        super().delete(file_id)


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


@pytest.fixture()
def store(app, monkeypatch):
    """Install a fresh in-memory attachment store for this test."""
    fresh = InMemoryAttachmentStore()
    monkeypatch.setitem(app.extensions, "attachment_store", fresh)
    return fresh


@pytest.fixture()
def failing_store(app, monkeypatch):
    """Return a factory: ``failing_store(2)`` makes the 2nd upload fail."""

    def _install(fail_on: int) -> FailingAttachmentStore:
        flaky = FailingAttachmentStore(fail_on)
        monkeypatch.setitem(app.extensions, "attachment_store", flaky)
        return flaky

    return _install


# ── Actors ───────────────────────────────────────────────────────────────


def _make_user(email, full_name, role, department="Operations", status="active"):
    user = User(email=email, full_name=full_name, role=role, department=department, status=status)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def creator():
    return _make_user("ada@memodesk.test", "Ada Creator", ROLE_STAFF)


@pytest.fixture()
def other_staff():
    return _make_user("bo@memodesk.test", "Bo Other", ROLE_STAFF)


@pytest.fixture()
def desk_head():
    return _make_user("dh@memodesk.test", "Dana Head", ROLE_DESK_HEAD)


@pytest.fixture()
def leo():
    return _make_user("leo@memodesk.test", "Lee Officer", ROLE_LEO)


# ── Convenience fixtures ─────────────────────────────────────────────────


def memo_payload(**overrides):
    data = {
        "title": "Quarterly stock count",
        "memo_type": "INSTRUCTIONAL",
        "department": "Operations",
        "body": "All units will close early on Friday for the stock count.",
        "priority_level": "URGENT",
        "signature": "Ada Creator\nOperations Officer",
        "date_of_issue": date(2026, 3, 2).isoformat(),
        "tags": ["inventory", "q1"],
    }
    data.update(overrides)
    return data


@pytest.fixture()
def make_memo(creator, store):
    """Create a DRAFT memo through the service layer."""
    from memodesk.services import memo_service

    def _make(actor=None, files=None, **overrides):
        actor = actor or creator
        return memo_service.create_memo(memo_payload(**overrides), files, actor_id=actor.id)

    return _make


@pytest.fixture()
def memo_data():
    """Factory for a valid create payload: ``memo_data(title="...")``."""
    return memo_payload


@pytest.fixture()
def make_user():
    """Factory for extra actors beyond the four standard fixtures."""
    return _make_user

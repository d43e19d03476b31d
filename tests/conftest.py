"""Shared test fixtures for the membership portal test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- db_session: tables created/dropped around every test
- client: Flask test client
- fake_identity: Supabase token verification replaced by a token table
- seed_data: an admin and a regular member

Each request pushes its own app context, so tests seed and inspect the
database inside `with app.app_context():` blocks, as with any other
session-scoped state.
"""

from unittest.mock import patch

import pytest

from membership import create_app
from membership.extensions import db as _db, identity
from membership.models.member import Member

ADMIN_ID = "00000000-0000-0000-0000-00000000a001"
MEMBER_ID = "00000000-0000-0000-0000-00000000b001"
OTHER_MEMBER_ID = "00000000-0000-0000-0000-00000000b002"

TOKENS = {
    "admin-token": {"id": ADMIN_ID, "email": "admin@club.test"},
    "member-token": {"id": MEMBER_ID, "email": "member@club.test"},
    "other-token": {"id": OTHER_MEMBER_ID, "email": "other@club.test"},
}


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
    yield _db
    with app.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture(autouse=True)
def fake_identity():
    """Resolve bearer tokens from TOKENS instead of calling Supabase."""
    with patch.object(identity, "verify_token", side_effect=TOKENS.get) as mock_verify:
        yield mock_verify


@pytest.fixture
def seed_data(app):
    """Seed an admin and one regular member (both set up, both active)."""
    with app.app_context():
        _db.session.add(Member(
            id=ADMIN_ID,
            email="admin@club.test",
            role="admin",
            setup_completed=True,
        ))
        _db.session.add(Member(
            id=MEMBER_ID,
            email="member@club.test",
            role="member",
            setup_completed=True,
        ))
        _db.session.commit()

    return {
        "admin_id": ADMIN_ID,
        "member_id": MEMBER_ID,
    }

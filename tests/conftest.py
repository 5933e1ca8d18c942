"""
Shared fixtures: a Flask app on a throwaway SQLite file, clients, tokens.
"""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from evoke import create_app
from evoke.models import db
from evoke.services.auth import sign_scanner_jwt
from evoke.services.tickets import create_ticket

ADMIN_KEY = "test-admin-key"
PAYSTACK_SECRET = "sk_test_paystack_secret"


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'evoke-test.db'}",
        "ADMIN_API_KEY": ADMIN_KEY,
        "JWT_SECRET": "test-jwt-secret-that-is-long-enough-for-hs256",
        "PAYSTACK_SECRET_KEY": PAYSTACK_SECRET,
        "CONSUMED_STORE": "sql",
        "TICKET_TAG_SCHEME": "digest",
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def scanner_headers(app):
    with app.app_context():
        token = sign_scanner_jwt("gate-1", role="staff")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def ticket():
    return create_ticket("EVT-1", "USR-1", "VIP", "Launch Night", "Jane Doe", 10000, "NGN")

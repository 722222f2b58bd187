"""
pytest configuration – point the app at a throwaway database, initialise
tables before tests run and provide shared session-scoped tokens so the
suite logs the seeded admin in once.
"""
import os
import uuid

os.environ.setdefault("ECOSYSTEM_DATABASE_URL", "sqlite:///./test_ecosystem.db")
os.environ.setdefault("ECOSYSTEM_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ECOSYSTEM_LOG_FORMAT", "text")
os.environ.setdefault("ECOSYSTEM_ADMIN_EMAIL", "admin@ecosystem40.com")
os.environ.setdefault("ECOSYSTEM_ADMIN_PASSWORD", "admin-test-password")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete

from app.database import Base, engine, db_session
from app import models  # noqa: F401 – registers ORM mappings with Base.metadata
from app.models import LoginAttempt
from app.cache import response_cache
from app.main import app

ADMIN_EMAIL = os.environ["ECOSYSTEM_ADMIN_EMAIL"]
ADMIN_PASSWORD = os.environ["ECOSYSTEM_ADMIN_PASSWORD"]


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Every TestClient request comes from the same IP; keep lockout and cache per-test."""
    response_cache.clear()
    yield
    response_cache.clear()
    with db_session() as session:
        session.execute(delete(LoginAttempt))


@pytest.fixture(scope="session")
def client() -> TestClient:
    return TestClient(app)


# Session-scoped admin token: login happens ONCE per test run
_session_token: str | None = None


@pytest.fixture(scope="session")
def admin_token(client) -> str:
    global _session_token
    if _session_token is None:
        resp = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert resp.status_code == 200, f"Login failed: {resp.text}"
        _session_token = resp.json()["access_token"]
    return _session_token


@pytest.fixture
def admin_headers(admin_token) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def make_user(client):
    """Sign up a fresh account; returns a dict with id, email, password and headers."""

    def _make(password: str = "user-password-1", display_name: str = "Test User") -> dict:
        email = f"user-{uuid.uuid4().hex[:10]}@ecosystem40.com"
        resp = client.post("/auth/signup", json={
            "email": email,
            "password": password,
            "display_name": display_name,
        })
        assert resp.status_code == 201, resp.text
        data = resp.json()
        return {
            "id": data["user_id"],
            "email": email,
            "password": password,
            "token": data["access_token"],
            "headers": {"Authorization": f"Bearer {data['access_token']}"},
        }

    return _make


@pytest.fixture
def make_admin(client, admin_headers, make_user):
    """A fresh account promoted to *role* by the seeded super admin."""

    def _make(role: str = "admin") -> dict:
        user = make_user()
        resp = client.post(f"/users/{user['id']}/promote", json={"role": role}, headers=admin_headers)
        assert resp.status_code == 200, resp.text
        return user

    return _make

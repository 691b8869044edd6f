"""Shared fixtures for chat sync tests."""

import os
import pytest
from fastapi.testclient import TestClient

# Ensure we use test settings: env-password operator, no database
os.environ.setdefault("OPERATOR_EMAIL", "admin@example.com")
os.environ.setdefault("OPERATOR_PASSWORD", "operator-pass")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ["DATABASE_URL"] = ""

OPERATOR_EMAIL = os.environ["OPERATOR_EMAIL"]
OPERATOR_PASSWORD = os.environ["OPERATOR_PASSWORD"]


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> int:
        self.now += ms
        return self.now


def visitor_record(text, created_at, name="Ann", email="ann@x.io", read=False, cid="U1"):
    return {
        "userId": cid,
        "name": name,
        "email": email,
        "message": text,
        "createdAt": created_at,
        "sender": "visitor",
        "read": read,
    }


def operator_record(text, created_at, cid="U1"):
    return {
        "userId": cid,
        "name": "Admin",
        "email": OPERATOR_EMAIL,
        "message": text,
        "createdAt": created_at,
        "sender": "operator",
        "read": True,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database(clock):
    """Fresh in-process realtime tree with a controllable clock."""
    from realtime.memory import RealtimeDatabase
    return RealtimeDatabase(now_func=clock)


@pytest.fixture
def client():
    """FastAPI test client with the app lifespan running."""
    from api.main import app
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def operator_token(client):
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": OPERATOR_EMAIL, "password": OPERATOR_PASSWORD},
    )
    assert resp.status_code == 200
    return resp.json()["access_token"]


@pytest.fixture
def operator_headers(operator_token):
    return {"Authorization": f"Bearer {operator_token}"}

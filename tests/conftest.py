"""
Shared pytest fixtures and test utilities for WanderVibe tests.

This module provides:
- Database setup/teardown with isolation
- A recording notifier swapped in through app.dependency_overrides
- Factories for users, plans, events and memberships driven through the API
- TestClient setup with proper environment configuration
"""
import os
import sqlite3
from pathlib import Path
from typing import Dict, Any, List, Iterable

import pytest
from fastapi.testclient import TestClient

# ─────────────────────────── PATH SETUP ───────────────────────────

TEST_ROOT = Path(__file__).resolve().parent
DATA_DIR = TEST_ROOT / "tmp_data"
DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_FILE = DATA_DIR / "wandervibe.db"

# ─────────────────────────── ENVIRONMENT ───────────────────────────

def configure_test_environment():
    """Configure environment variables for testing."""
    os.environ["DB_PATH"] = str(DB_FILE)
    os.environ["LOG_FILE"] = str(DATA_DIR / "wandervibe.log")
    os.environ["ADMIN_EMAILS"] = "admin@example.com"
    os.environ["SMTP_HOST"] = ""  # Never send real email
    os.environ.setdefault("BASE_URL", "http://testserver")
    os.environ.setdefault("LOG_LEVEL", "WARNING")

configure_test_environment()

import sys
sys.path.insert(0, str(TEST_ROOT.parent))

from wandervibe.main import app  # noqa: E402
from wandervibe.auth import init_db  # noqa: E402
from wandervibe.notifications import Notifier, get_notifier  # noqa: E402

PASSWORD = "wandering123"

# ─────────────────────────── DATABASE HELPERS ───────────────────────────

def get_test_db():
    """Get a database connection for test operations."""
    conn = sqlite3.connect(DB_FILE)
    conn.row_factory = sqlite3.Row
    return conn


def clear_all_test_data():
    """Clear all test data from database tables."""
    init_db()
    conn = get_test_db()
    for table in ("invitations", "events", "plan_members", "plans", "audit_log", "user_sessions", "users"):
        conn.execute(f"DELETE FROM {table}")
    conn.commit()
    conn.close()

# ─────────────────────────── NOTIFIER ───────────────────────────

class RecordingNotifier(Notifier):
    """Keeps every notification instead of sending it."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    def notify(self, user_ids: Iterable[str], message: str, channel: str = "email") -> int:
        user_ids = list(user_ids)
        self.sent.append({"user_ids": user_ids, "message": message, "channel": channel})
        return len(user_ids)

    def messages_for(self, user_id: str) -> List[str]:
        return [n["message"] for n in self.sent if user_id in n["user_ids"]]

# ─────────────────────────── API FACTORIES ───────────────────────────

def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def register_user(client: TestClient, email: str, first_name: str = "Test", last_name: str = "User") -> Dict[str, Any]:
    """Register through the API. Returns the user dict plus token and headers."""
    resp = client.post("/api/auth/register", json={
        "email": email,
        "password": PASSWORD,
        "first_name": first_name,
        "last_name": last_name,
    })
    assert resp.status_code == 201, resp.text
    body = resp.json()
    client.cookies.clear()  # Keep callers explicit about who they are
    user = body["user"]
    user["token"] = body["token"]
    user["headers"] = auth_headers(body["token"])
    return user


def create_plan(client: TestClient, owner: Dict[str, Any], **overrides) -> Dict[str, Any]:
    payload = {
        "type": "trip",
        "name": "London Calling",
        "destination": "London, UK",
        "time_zone": "Europe/London",
    }
    payload.update(overrides)
    resp = client.post("/api/plans", json=payload, headers=owner["headers"])
    assert resp.status_code == 201, resp.text
    return resp.json()["plan"]


def create_event(client: TestClient, user: Dict[str, Any], plan_id: str, **overrides) -> Dict[str, Any]:
    payload = {
        "plan_id": plan_id,
        "title": "Dinner at Dishoom",
        "type": "dining",
        "start_time": "2025-10-11T18:00:00Z",
        "end_time": "2025-10-11T20:00:00Z",
        "location": "Covent Garden",
    }
    payload.update(overrides)
    resp = client.post("/api/events", json=payload, headers=user["headers"])
    assert resp.status_code == 201, resp.text
    return resp.json()["event"]


def add_member(client: TestClient, inviter: Dict[str, Any], invitee: Dict[str, Any], plan_id: str, role: str):
    """Invite and accept, leaving invitee on the plan with the given role."""
    resp = client.post(
        f"/api/plans/{plan_id}/invite",
        json={"email": invitee["email"], "role": role},
        headers=inviter["headers"],
    )
    assert resp.status_code == 201, resp.text
    invitation_id = resp.json()["invitation"]["id"]
    resp = client.post(
        f"/api/invitations/{invitation_id}/respond",
        json={"status": "accepted"},
        headers=invitee["headers"],
    )
    assert resp.status_code == 200, resp.text

# ─────────────────────────── PYTEST FIXTURES ───────────────────────────

@pytest.fixture
def notifier():
    """Recording notifier installed for the duration of a test."""
    recorder = RecordingNotifier()
    app.dependency_overrides[get_notifier] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture
def client(notifier):
    """
    Function-scoped test client with clean database state.
    Each test gets a fresh database.
    """
    clear_all_test_data()
    with TestClient(app) as client:
        yield client


@pytest.fixture
def coordinator(client):
    return register_user(client, "cora@example.com", "Cora", "Coordinator")


@pytest.fixture
def planner(client):
    return register_user(client, "pete@example.com", "Pete", "Planner")


@pytest.fixture
def wanderer(client):
    return register_user(client, "wendy@example.com", "Wendy", "Wanderer")


@pytest.fixture
def outsider(client):
    return register_user(client, "otto@example.com", "Otto", "Outsider")


@pytest.fixture
def plan(client, coordinator):
    """A London trip owned by the coordinator fixture."""
    return create_plan(client, coordinator)


@pytest.fixture
def full_plan(client, plan, coordinator, planner, wanderer):
    """Plan with one participant in each role."""
    add_member(client, coordinator, planner, plan["id"], "VibePlanner")
    add_member(client, coordinator, wanderer, plan["id"], "Wanderer")
    return plan

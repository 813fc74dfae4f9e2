"""
API tests for accounts and admin routes.

These tests verify that:
1. Registration, login and logout manage the user_session cookie and tokens
2. Profiles can be read and edited
3. Deleting a user hands coordinated plans to a VibePlanner or deletes them
"""

import logging

from tests.conftest import PASSWORD, register_user, create_plan, add_member, get_test_db, auth_headers


class TestAuth:
    """Test register / login / logout."""

    def test_register_sets_cookie(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "New.Person@Example.com",
            "password": PASSWORD,
            "first_name": "New",
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["user"]["email"] == "new.person@example.com"
        assert body["user"]["notification_prefs"] == {"email": True, "sms": False}
        assert "password_hash" not in body["user"]
        assert resp.cookies.get("user_session") == body["token"]

        # The cookie alone authenticates
        resp = client.get("/api/users/me")
        assert resp.status_code == 200
        assert resp.json()["user"]["first_name"] == "New"

    def test_duplicate_email(self, client, coordinator):
        resp = client.post("/api/auth/register", json={"email": "CORA@example.com", "password": PASSWORD})
        assert resp.status_code == 400

    def test_short_password(self, client):
        resp = client.post("/api/auth/register", json={"email": "short@example.com", "password": "1234567"})
        assert resp.status_code == 400

    def test_login_and_logout(self, client, coordinator):
        resp = client.post("/api/auth/login", json={"email": "cora@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        token = resp.json()["token"]
        assert token != coordinator["token"]

        resp = client.post("/api/auth/logout", headers=auth_headers(token))
        assert resp.status_code == 200
        assert client.get("/api/users/me", headers=auth_headers(token)).status_code == 401

        # Other sessions survive
        assert client.get("/api/users/me", headers=coordinator["headers"]).status_code == 200

    def test_bad_credentials(self, client, coordinator):
        resp = client.post("/api/auth/login", json={"email": "cora@example.com", "password": "wrong-password"})
        assert resp.status_code == 400
        resp = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
        assert resp.status_code == 400


class TestProfile:
    """Test profile reads and edits."""

    def test_update_profile(self, client, coordinator):
        resp = client.patch(
            "/api/users/me",
            json={"phone_number": "+44 20 7946 0000", "notification_prefs": {"email": False}},
            headers=coordinator["headers"],
        )
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["phone_number"] == "+44 20 7946 0000"
        assert user["notification_prefs"] == {"email": False, "sms": False}
        assert user["first_name"] == "Cora"

    def test_prefs_must_be_object(self, client, coordinator):
        resp = client.patch("/api/users/me", json={"notification_prefs": "off"}, headers=coordinator["headers"])
        assert resp.status_code == 400

    def test_admin_from_env(self, client):
        admin = register_user(client, "admin@example.com", "Ada", "Admin")
        assert admin["is_admin"] is True


class TestUserDeletion:
    """Test account deletion and coordinator hand-off."""

    def test_cannot_delete_others(self, client, coordinator, outsider):
        resp = client.post(f"/api/users/{coordinator['id']}/delete", headers=outsider["headers"])
        assert resp.status_code == 403

    def test_plan_passes_to_earliest_planner(self, client, full_plan, coordinator, planner, wanderer, notifier):
        later = register_user(client, "lara@example.com", "Lara", "Later")
        add_member(client, coordinator, later, full_plan["id"], "VibePlanner")

        resp = client.post(f"/api/users/{coordinator['id']}/delete", headers=coordinator["headers"])
        assert resp.status_code == 200
        assert resp.json()["transferred"] == [full_plan["id"]]

        resp = client.get(f"/api/plans/{full_plan['id']}", headers=planner["headers"])
        assert resp.json()["role"] == "VibeCoordinator"
        assert resp.json()["plan"]["owner_id"] == planner["id"]
        assert any("transferred to" in m for m in notifier.messages_for(wanderer["id"]))

        users = client.get(f"/api/plans/{full_plan['id']}/users", headers=planner["headers"]).json()["users"]
        assert coordinator["id"] not in [u["user_id"] for u in users]

        assert client.get("/api/users/me", headers=coordinator["headers"]).status_code == 401

    def test_plan_without_planner_is_deleted(self, client, plan, coordinator, wanderer):
        add_member(client, coordinator, wanderer, plan["id"], "Wanderer")

        resp = client.post(f"/api/users/{coordinator['id']}/delete", headers=coordinator["headers"])
        assert resp.status_code == 200
        assert resp.json()["deleted"] == [plan["id"]]

        assert client.get("/api/plans", headers=wanderer["headers"]).json()["plans"] == []

    def test_member_just_leaves(self, client, full_plan, coordinator, wanderer):
        resp = client.post(f"/api/users/{wanderer['id']}/delete", headers=wanderer["headers"])
        assert resp.status_code == 200
        assert resp.json()["left"] == [full_plan["id"]]

        users = client.get(f"/api/plans/{full_plan['id']}/users", headers=coordinator["headers"]).json()["users"]
        assert len(users) == 2

    def test_pending_invitations_removed(self, client, plan, coordinator, outsider):
        client.post(
            f"/api/plans/{plan['id']}/invite",
            json={"email": outsider["email"], "role": "Wanderer"},
            headers=coordinator["headers"],
        )
        client.post(f"/api/users/{outsider['id']}/delete", headers=outsider["headers"])

        conn = get_test_db()
        count = conn.execute("SELECT COUNT(*) FROM invitations WHERE user_id = ?", (outsider["id"],)).fetchone()[0]
        conn.close()
        assert count == 0

    def test_admin_deletes_anyone(self, client, outsider):
        admin = register_user(client, "admin@example.com", "Ada", "Admin")
        resp = client.post(f"/api/users/{outsider['id']}/delete", headers=admin["headers"])
        assert resp.status_code == 200

        resp = client.post(f"/api/users/{outsider['id']}/delete", headers=admin["headers"])
        assert resp.status_code == 404


class TestAdminRoutes:
    """Test the admin log and audit views."""

    def test_logs_require_admin(self, client, coordinator):
        assert client.get("/api/admin/logs").status_code == 401
        assert client.get("/api/admin/logs", headers=coordinator["headers"]).status_code == 403

    def test_logs_filtered(self, client):
        admin = register_user(client, "admin@example.com", "Ada", "Admin")
        logging.getLogger("wandervibe.tests").warning("needle in the log buffer")

        resp = client.get("/api/admin/logs", params={"level": "warning", "search": "needle"}, headers=admin["headers"])
        assert resp.status_code == 200
        logs = resp.json()["logs"]
        assert logs
        assert all(entry["level"] == "WARNING" for entry in logs)
        assert "needle in the log buffer" in logs[0]["message"]

    def test_audit_records_plan_creation(self, client, coordinator):
        admin = register_user(client, "admin@example.com", "Ada", "Admin")
        plan = create_plan(client, coordinator)

        resp = client.get(
            "/api/admin/audit",
            params={"target_type": "plan", "target_id": plan["id"]},
            headers=admin["headers"],
        )
        assert resp.status_code == 200
        assert [e["action"] for e in resp.json()["entries"]] == ["plan_created"]

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"

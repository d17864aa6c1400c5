"""Tests for the JSON auth routes.

Covers:
- Login: valid credentials (JSON and form), bad password, unknown email,
  deactivated account, missing fields, already-authenticated shortcut
- Logout: clears the session, requires login
"""

import json

from premium.extensions import db
from premium.models.user import User


class TestLogin:
    """Tests for POST /auth/login."""

    def test_login_valid_credentials(self, client, seed_data):
        resp = client.post(
            "/auth/login",
            json={"email": "admin@premium.local", "password": "admin123"},
        )
        assert resp.status_code == 200
        user = json.loads(resp.data)["user"]
        assert user["id"] == seed_data["admin_id"]
        assert user["email"] == "admin@premium.local"
        assert user["isAdmin"] is True

    def test_login_form_fields(self, client, seed_data):
        """Form-encoded credentials are accepted too."""
        resp = client.post(
            "/auth/login",
            data={"email": "member@example.com", "password": "member123"},
        )
        assert resp.status_code == 200
        assert json.loads(resp.data)["user"]["isAdmin"] is False

    def test_login_email_is_normalized(self, client, seed_data):
        resp = client.post(
            "/auth/login",
            json={"email": "  Member@Example.COM ", "password": "member123"},
        )
        assert resp.status_code == 200

    def test_login_invalid_password(self, client, seed_data):
        resp = client.post(
            "/auth/login",
            json={"email": "admin@premium.local", "password": "wrongpassword"},
        )
        assert resp.status_code == 401
        assert json.loads(resp.data)["error"] == "Invalid email or password."

    def test_login_nonexistent_email(self, client, seed_data):
        resp = client.post(
            "/auth/login",
            json={"email": "nobody@example.com", "password": "anything"},
        )
        assert resp.status_code == 401

    def test_login_deactivated_account(self, client, seed_data, app):
        with app.app_context():
            member = db.session.get(User, seed_data["member_id"])
            member.is_active = False
            db.session.commit()

        resp = client.post(
            "/auth/login",
            json={"email": "member@example.com", "password": "member123"},
        )
        assert resp.status_code == 403
        assert "deactivated" in json.loads(resp.data)["error"]

    def test_login_missing_fields(self, client, seed_data):
        resp = client.post("/auth/login", json={"email": "", "password": ""})
        assert resp.status_code == 400
        assert "required" in json.loads(resp.data)["error"]

    def test_login_when_already_authenticated(self, member_client, seed_data):
        """A logged-in session gets its own user back, whatever the body says."""
        resp = member_client.post("/auth/login", json={})
        assert resp.status_code == 200
        assert json.loads(resp.data)["user"]["id"] == seed_data["member_id"]


class TestLogout:
    """Tests for POST /auth/logout."""

    def test_logout(self, member_client):
        resp = member_client.post("/auth/logout")
        assert resp.status_code == 200
        assert json.loads(resp.data) == {"status": "logged_out"}

        # Session is gone
        assert member_client.get("/premium/entitlement").status_code == 401

    def test_logout_when_not_logged_in(self, client, seed_data):
        resp = client.post("/auth/logout")
        assert resp.status_code == 401

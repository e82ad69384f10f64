"""
Tests for the authentication endpoints.

Tests cover:
- registration (citizen-only, duplicate email, validation)
- login (credentials, blocked accounts)
- /me and bearer token handling
- per-IP rate limiting
"""
from datetime import timedelta

import pytest

from aquasentra.core.config import settings
from aquasentra.domain.services.security import create_access_token

REGISTER_PAYLOAD = {
    "first_name": "Ana",
    "last_name": "Diaz",
    "email": "Ana.Diaz@Example.com",
    "password": "s3cure-password",
}

pytestmark = pytest.mark.db_required


class TestRegister:
    def test_register_creates_citizen(self, client):
        response = client.post("/api/auth/register", json=REGISTER_PAYLOAD)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["token"]
        user = body["data"]["user"]
        assert user["email"] == "ana.diaz@example.com"
        assert user["role"] == "citizen"
        assert user["status"] == "active"
        assert "password_hash" not in user

    def test_role_in_payload_is_ignored(self, client):
        response = client.post("/api/auth/register", json={**REGISTER_PAYLOAD, "role": "admin"})
        assert response.status_code == 201
        assert response.json()["data"]["user"]["role"] == "citizen"

    def test_duplicate_email_conflict(self, client):
        client.post("/api/auth/register", json=REGISTER_PAYLOAD)
        response = client.post(
            "/api/auth/register", json={**REGISTER_PAYLOAD, "email": "ANA.DIAZ@example.com"}
        )

        assert response.status_code == 409
        assert response.json() == {"success": False, "message": "User already exists with this email"}

    def test_short_password(self, client):
        response = client.post("/api/auth/register", json={**REGISTER_PAYLOAD, "password": "short"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert any(e["field"] == "password" for e in body["errors"])

    def test_welcome_email_failure_does_not_fail_registration(self, client):
        async def broken(*args, **kwargs):
            raise RuntimeError("smtp down")

        client.app.state.email_service.send_welcome_email = broken
        try:
            response = client.post("/api/auth/register", json=REGISTER_PAYLOAD)
        finally:
            del client.app.state.email_service.send_welcome_email
        assert response.status_code == 201


class TestLogin:
    def test_login_success(self, client, make_user):
        make_user("verifier", email="v@example.com")

        response = client.post("/api/auth/login", json={"email": "V@example.com", "password": "password123"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        assert data["user"]["last_active_at"] is not None

    def test_wrong_password(self, client, make_user):
        make_user(email="c@example.com")
        response = client.post("/api/auth/login", json={"email": "c@example.com", "password": "wrong-password"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"

    def test_unknown_email(self, client):
        response = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "x"})
        assert response.status_code == 401

    @pytest.mark.parametrize("status", ["suspended", "inactive"])
    def test_blocked_accounts(self, client, make_user, status):
        make_user(email="blocked@example.com", status=status)
        response = client.post("/api/auth/login", json={"email": "blocked@example.com", "password": "password123"})

        assert response.status_code == 403
        assert response.json()["message"] == f"Account is {status}. Please contact support."


class TestMe:
    def test_me(self, client, citizen, headers_for):
        response = client.get("/api/auth/me", headers=headers_for(citizen))
        assert response.status_code == 200
        assert response.json()["data"]["user"]["id"] == str(citizen.id)

    def test_missing_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["message"] == "No token, authorization denied"

    def test_garbage_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["message"] == "Token is not valid"

    def test_expired_token(self, client, citizen):
        token = create_access_token({"sub": str(citizen.id)}, expires_delta=timedelta(seconds=-5))
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_suspended_user_token_rejected(self, client, make_user, headers_for):
        user = make_user(status="suspended")
        response = client.get("/api/auth/me", headers=headers_for(user))
        assert response.status_code == 403


class TestRateLimit:
    def test_login_rate_limited(self, client):
        payload = {"email": "nobody@example.com", "password": "x"}
        for _ in range(settings.AUTH_RATE_LIMIT_REQUESTS):
            assert client.post("/api/auth/login", json=payload).status_code == 401

        response = client.post("/api/auth/login", json=payload)
        assert response.status_code == 429
        assert response.json()["success"] is False

"""Integration tests for the authentication flow.

Tests verify the end-to-end auth lifecycle:
- Registration creates an account and returns a token pair
- Duplicate emails are rejected
- Login checks the password and account status
- Access tokens unlock protected routes; refresh tokens rotate

These tests require a live PostgreSQL instance.  Run with:
    pytest tests/integration/ -m integration -v

All tests use the ``db_client`` and ``db_session`` fixtures from conftest.py,
which ensure per-test rollback so no data persists between tests.
"""

from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from mc_exchange.core.models.users import User
from tests.factories.users import TEST_PASSWORD

pytestmark = pytest.mark.integration


def _unique_email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


class TestRegistration:
    async def test_register_then_me(self, db_client: AsyncClient) -> None:
        email = _unique_email("new")
        response = await db_client.post(
            "/api/auth/register",
            json={"email": email, "password": "Str0ngPass!", "name": "New Buyer"},
        )

        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["user"]["email"] == email
        assert data["user"]["emailVerified"] is False

        token = data["tokens"]["accessToken"]
        me = await db_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["data"]["role"] == "BUYER"

    async def test_duplicate_email_conflicts(self, db_client: AsyncClient, test_buyer: User) -> None:
        response = await db_client.post(
            "/api/auth/register",
            json={"email": test_buyer.email, "password": "Str0ngPass!", "name": "Again"},
        )

        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"


class TestLogin:
    async def test_wrong_password(self, db_client: AsyncClient, test_buyer: User) -> None:
        response = await db_client.post(
            "/api/auth/login", json={"email": test_buyer.email, "password": "wrong-password"}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid email or password"

    async def test_blocked_user_cannot_log_in(self, db_client: AsyncClient, test_buyer: User, db_session) -> None:
        test_buyer.status = "BLOCKED"
        await db_session.flush()

        response = await db_client.post(
            "/api/auth/login", json={"email": test_buyer.email, "password": TEST_PASSWORD}
        )

        assert response.status_code == 403

    async def test_protected_route_with_token(
        self, db_client: AsyncClient, buyer_auth_headers: dict[str, str], test_buyer: User
    ) -> None:
        response = await db_client.get("/api/auth/me", headers=buyer_auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["id"] == str(test_buyer.id)

    async def test_admin_route_rejects_buyer(
        self, db_client: AsyncClient, buyer_auth_headers: dict[str, str]
    ) -> None:
        response = await db_client.get("/api/admin/dashboard", headers=buyer_auth_headers)

        assert response.status_code == 403


class TestRefresh:
    async def test_refresh_token_rotates(self, db_client: AsyncClient, test_buyer: User) -> None:
        login = await db_client.post(
            "/api/auth/login", json={"email": test_buyer.email, "password": TEST_PASSWORD}
        )
        refresh_token = login.json()["data"]["tokens"]["refreshToken"]

        first = await db_client.post("/api/auth/refresh-token", json={"refreshToken": refresh_token})
        assert first.status_code == 200
        assert first.json()["data"]["refreshToken"] != refresh_token

        replay = await db_client.post("/api/auth/refresh-token", json={"refreshToken": refresh_token})
        assert replay.status_code == 401

"""Unit tests for the error envelope produced by ``api/error_handlers.py``.

A throwaway FastAPI app with the handlers installed raises each exception
family; the real application is exercised in the route tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import jwt
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from mc_exchange.api.error_handlers import register_exception_handlers
from mc_exchange.core.exceptions import (
    ConflictError,
    NotFoundError,
    TooManyRequestsError,
    ValidationError,
)


class _Body(BaseModel):
    amount: float


def _build_app() -> FastAPI:
    application = FastAPI()
    register_exception_handlers(application)

    @application.get("/missing")
    async def missing() -> None:
        raise NotFoundError("Listing")

    @application.get("/conflict")
    async def conflict() -> None:
        raise ConflictError("Offer already exists")

    @application.get("/invalid")
    async def invalid() -> None:
        raise ValidationError([{"field": "price", "message": "must be positive"}])

    @application.get("/throttled")
    async def throttled() -> None:
        raise TooManyRequestsError("Slow down", retry_after=30)

    @application.get("/expired")
    async def expired() -> None:
        raise jwt.ExpiredSignatureError("expired")

    @application.get("/boom")
    async def boom() -> None:
        raise RuntimeError("kaboom")

    @application.post("/body")
    async def body(payload: _Body) -> dict:
        return {"amount": payload.amount}

    return application


@pytest_asyncio.fixture
async def error_client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=_build_app(), raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestAppErrors:
    async def test_not_found_envelope(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Listing not found"
        assert body["code"] == "NOT_FOUND"
        assert body["path"] == "/missing"
        assert "timestamp" in body

    async def test_conflict(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/conflict")

        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    async def test_validation_error_lists_fields(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/invalid")

        assert response.status_code == 400
        assert response.json()["errors"] == [{"field": "price", "message": "must be positive"}]

    async def test_too_many_requests_sets_retry_after(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/throttled")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        assert response.json()["retryAfter"] == 30


class TestFrameworkErrors:
    async def test_unknown_route(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/nope")

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "ROUTE_NOT_FOUND"
        assert body["error"] == "Route GET /nope not found"

    async def test_request_validation(self, error_client: AsyncClient) -> None:
        response = await error_client.post("/body", json={"amount": "lots"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["errors"][0]["field"] == "amount"

    async def test_malformed_json(self, error_client: AsyncClient) -> None:
        response = await error_client.post(
            "/body", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON in request body"

    async def test_expired_token(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/expired")

        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_EXPIRED"

    async def test_unhandled_exception_outside_production(self, error_client: AsyncClient) -> None:
        response = await error_client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "INTERNAL_ERROR"
        assert body["error"] == "kaboom"

    @pytest.mark.parametrize("path", ["/missing", "/boom"])
    async def test_envelope_is_json(self, error_client: AsyncClient, path: str) -> None:
        response = await error_client.get(path)

        assert response.headers["content-type"].startswith("application/json")

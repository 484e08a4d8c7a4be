"""Unit tests for the slowapi key function and the 429 envelope."""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

from fastapi_users.jwt import generate_jwt
from starlette.requests import Request

from mc_exchange.api.limiter import rate_limit_exceeded_handler, rate_limit_key
from mc_exchange.config.settings import get_settings


def _request(authorization: str | None = None, host: str = "203.0.113.9") -> Request:
    headers = [(b"authorization", authorization.encode())] if authorization else []
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/listings",
        "query_string": b"",
        "headers": headers,
        "client": (host, 50000),
    }
    return Request(scope)


class TestRateLimitKey:
    def test_anonymous_requests_use_ip(self) -> None:
        assert rate_limit_key(_request()) == "203.0.113.9"

    def test_valid_token_uses_user_id(self) -> None:
        user_id = str(uuid.uuid4())
        token = generate_jwt(
            {"sub": user_id, "aud": ["fastapi-users:auth"]},
            get_settings().secret_key,
            lifetime_seconds=60,
        )

        assert rate_limit_key(_request(f"Bearer {token}")) == f"user:{user_id}"

    def test_invalid_token_falls_back_to_ip(self) -> None:
        assert rate_limit_key(_request("Bearer not-a-jwt")) == "203.0.113.9"

    def test_token_signed_with_other_secret(self) -> None:
        token = generate_jwt(
            {"sub": "someone", "aud": ["fastapi-users:auth"]}, "other-secret", lifetime_seconds=60
        )

        assert rate_limit_key(_request(f"Bearer {token}")) == "203.0.113.9"


class TestExceededHandler:
    def test_envelope_and_header(self) -> None:
        exc = MagicMock()
        exc.limit.limit.get_expiry.return_value = 900

        response = rate_limit_exceeded_handler(_request(), exc)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "900"
        assert b'"retryAfter":900' in response.body

"""Unit tests for the shared response envelope and request schemas."""

from __future__ import annotations

import uuid

import pydantic
import pytest

from mc_exchange.core.schemas.auth import RegisterRequest, UserRead
from mc_exchange.core.schemas.common import PageParams, Pagination, camelize, ok
from tests.factories import build_user


class TestEnvelope:
    def test_ok_dumps_models_by_alias(self) -> None:
        user = build_user(name="Dana")
        body = ok(UserRead.model_validate(user), message="Profile loaded")

        assert body["success"] is True
        assert body["message"] == "Profile loaded"
        assert body["data"]["emailVerified"] is True
        assert body["data"]["trustScore"] == 50
        assert body["data"]["id"] == str(user.id)

    def test_ok_without_data(self) -> None:
        assert ok() == {"success": True}

    def test_pagination_block(self) -> None:
        body = ok([], pagination=Pagination.build(page=2, limit=20, total=45))

        assert body["data"] == []
        assert body["pagination"] == {
            "page": 2,
            "limit": 20,
            "total": 45,
            "totalPages": 3,
            "hasMore": True,
        }

    def test_last_page_has_no_more(self) -> None:
        assert Pagination.build(page=3, limit=20, total=45).has_more is False
        assert Pagination.build(page=1, limit=20, total=0).total_pages == 0

    def test_camelize_nested_dicts(self) -> None:
        listing_id = uuid.uuid4()
        result = camelize({"listing_id": listing_id, "items": [{"mc_number": "1"}], "status": "x"})

        assert result == {"listingId": listing_id, "items": [{"mcNumber": "1"}], "status": "x"}


class TestPageParams:
    def test_offset(self) -> None:
        assert PageParams(page=3, limit=10).offset == 20

    @pytest.mark.parametrize("params", [{"page": 0}, {"limit": 101}, {"limit": 0}])
    def test_bounds(self, params: dict) -> None:
        with pytest.raises(pydantic.ValidationError):
            PageParams(**params)


class TestRegisterRequest:
    def test_accepts_camel_case_and_defaults_to_buyer(self) -> None:
        request = RegisterRequest.model_validate(
            {"email": "a@example.com", "password": "x", "name": "A", "companyName": "A Freight"}
        )

        assert request.role == "BUYER"
        assert request.company_name == "A Freight"

    def test_admin_signup_is_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="role must be BUYER or SELLER"):
            RegisterRequest(email="a@example.com", password="x", name="A", role="ADMIN")

    def test_invalid_email(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            RegisterRequest(email="not-an-email", password="x", name="A")

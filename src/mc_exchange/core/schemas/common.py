"""Shared schema building blocks: camelCase base model, pagination, envelopes.

Every endpoint answers with ``{"success": true, "data": ..., "pagination"?:
..., "message"?: ...}``; :func:`ok` builds that envelope from schema
instances, lists or plain dicts.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API schemas: snake_case in Python, camelCase on the wire.

    Request bodies accept either spelling; responses are dumped with aliases.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Pagination(CamelModel):
    """Pagination block returned next to list payloads."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> Pagination:
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_more=page < total_pages,
        )


class PageParams(BaseModel):
    """Validated ``page`` / ``limit`` query parameters."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class MessageResponse(CamelModel):
    message: str


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [_dump(item) for item in value]
    if isinstance(value, dict):
        return {key: _dump(item) for key, item in value.items()}
    return value


def ok(
    data: Any = None,
    *,
    message: Optional[str] = None,
    pagination: Optional[Pagination] = None,
) -> dict[str, Any]:
    """Build the success envelope.

    Args:
        data: Schema instance, list of them, dict or scalar.
        message: Optional human-readable confirmation.
        pagination: Pagination block for list endpoints.
    """
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = _dump(data)
    if message is not None:
        body["message"] = message
    if pagination is not None:
        body["pagination"] = _dump(pagination)
    return body


def camelize(value: Any) -> Any:
    """Dump schemas and rename snake_case dict keys to camelCase, recursively.

    For service results returned as plain dicts; keys without an underscore
    are left alone.
    """
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [camelize(item) for item in value]
    if isinstance(value, dict):
        return {
            (to_camel(key) if isinstance(key, str) and "_" in key else key): camelize(item)
            for key, item in value.items()
        }
    return value

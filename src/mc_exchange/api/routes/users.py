"""User profile routes.

Own profile (``/me``), dashboard statistics, and the public views of
another user: profile, reviews and active listings.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, File, Request, UploadFile

from mc_exchange.api.dependencies import CurrentUser, Pages
from mc_exchange.api.limiter import UPLOAD_LIMIT, limiter
from mc_exchange.core.exceptions import BadRequestError
from mc_exchange.core.schemas.auth import PublicUser, UserRead, UserUpdate
from mc_exchange.core.schemas.common import Pagination, camelize, ok
from mc_exchange.core.schemas.listings import ListingRead
from mc_exchange.core.schemas.transactions import ReviewRead
from mc_exchange.core.storage_service import get_storage
from mc_exchange.core.user_service import UserService, get_user_service

router = APIRouter()

_AVATAR_TYPES = {"image/jpeg", "image/png", "image/webp"}
_AVATAR_MAX_BYTES = 2 * 1024 * 1024


# ---------------------------------------------------------------------------
# Own profile
# ---------------------------------------------------------------------------


@router.get("/me")
async def get_me(user: CurrentUser, service: UserService = Depends(get_user_service)) -> dict:
    profile, stats = await service.get_profile(user.id)
    data = UserRead.model_validate(profile).model_dump(mode="json", by_alias=True)
    data["stats"] = camelize(stats)
    return ok(data)


@router.api_route("/me", methods=["PUT", "PATCH"])
async def update_me(
    body: UserUpdate,
    user: CurrentUser,
    service: UserService = Depends(get_user_service),
) -> dict:
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise BadRequestError("No fields to update")
    updated = await service.update_profile(user.id, changes)
    return ok(UserRead.model_validate(updated), message="Profile updated")


@router.post("/me/avatar")
@limiter.limit(UPLOAD_LIMIT)
async def upload_avatar(
    request: Request,
    user: CurrentUser,
    file: UploadFile = File(...),
    service: UserService = Depends(get_user_service),
) -> dict:
    """Replace the profile picture (JPEG, PNG or WebP up to 2 MiB)."""
    if file.content_type not in _AVATAR_TYPES:
        raise BadRequestError("Avatar must be a JPEG, PNG or WebP image")
    data = await file.read()
    if len(data) > _AVATAR_MAX_BYTES:
        raise BadRequestError("File too large")

    storage = get_storage()
    stored = await storage.save(data, file.filename or "avatar", folder="avatars")
    previous = user.avatar
    updated = await service.update_avatar(user.id, storage.url_for(stored))
    if previous and previous.startswith(storage.base_url):
        await storage.delete(storage.relative_from_url(previous))
    return ok(UserRead.model_validate(updated), message="Avatar updated")


@router.delete("/me")
async def deactivate_me(
    user: CurrentUser, service: UserService = Depends(get_user_service)
) -> dict:
    await service.deactivate_account(user.id)
    return ok(message="Account deactivated")


@router.get("/dashboard")
async def dashboard(user: CurrentUser, service: UserService = Depends(get_user_service)) -> dict:
    return ok(camelize(await service.get_dashboard_stats(user)))


# ---------------------------------------------------------------------------
# Public views
# ---------------------------------------------------------------------------


@router.get("/{user_id}")
async def public_profile(
    user_id: uuid.UUID, service: UserService = Depends(get_user_service)
) -> dict:
    profile = await service.get_public_profile(user_id)
    data = PublicUser.model_validate(profile.pop("user")).model_dump(mode="json", by_alias=True)
    data.update(camelize(profile))
    return ok(data)


@router.get("/{user_id}/reviews")
async def user_reviews(
    user_id: uuid.UUID,
    pages: Pages,
    service: UserService = Depends(get_user_service),
) -> dict:
    rows, total = await service.get_user_reviews(user_id, offset=pages.offset, limit=pages.limit)
    return ok(
        [ReviewRead.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/{user_id}/listings")
async def user_listings(
    user_id: uuid.UUID,
    pages: Pages,
    service: UserService = Depends(get_user_service),
) -> dict:
    rows, total = await service.get_user_listings(user_id, offset=pages.offset, limit=pages.limit)
    return ok(
        [ListingRead.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )

"""Shared helpers for the marketing integrations.

Facebook, Telegram and GoHighLevel credentials are not environment
settings: admins paste them into the settings panel, so they live in
``platform_settings`` rows and are read through the settings cache.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.config.settings import get_settings
from mc_exchange.core.cache_service import CacheService, get_cache
from mc_exchange.core.models.admin import PlatformSetting
from mc_exchange.core.models.listings import Listing


async def load_integration_settings(
    session: AsyncSession,
    keys: Iterable[str],
    cache: Optional[CacheService] = None,
) -> dict[str, str]:
    """Return ``{key: value}`` for *keys*; missing keys map to ``""``."""
    keys = list(keys)
    cached = await (cache or get_cache()).get_cached_settings()
    if isinstance(cached, dict):
        return {key: str(cached.get(key) or "") for key in keys}
    rows = await session.execute(
        select(PlatformSetting.key, PlatformSetting.value).where(PlatformSetting.key.in_(keys))
    )
    found = {key: value for key, value in rows.all()}
    return {key: found.get(key) or "" for key in keys}


def mask_mc_number(mc_number: str) -> str:
    """Public posts only show the last three digits of an MC number."""
    return f"***{mc_number[-3:]}" if len(mc_number) > 3 else "***"


def listing_url(listing: Listing) -> str:
    return f"{get_settings().frontend_url}/mc/{listing.id}"


def listing_promotion_text(
    listing: Listing,
    *,
    custom_message: Optional[str] = None,
    html: bool = False,
    extra_lines: Optional[list[str]] = None,
) -> str:
    """Build the promotional post for *listing*.

    Args:
        custom_message: Optional lead paragraph written by the admin.
        html: Wrap the title in ``<b>`` and render the link as an anchor
            (Telegram ``HTML`` parse mode).
        extra_lines: Lines inserted after the price.
    """
    url = listing_url(listing)
    title = f"<b>{listing.title}</b>" if html else listing.title
    lines: list[str] = []
    if custom_message:
        lines += [custom_message, ""]
    lines += [
        f"🚛 {title}",
        "",
        f"📋 MC# {mask_mc_number(listing.mc_number)}",
        f"💰 Listing Price: ${listing.price:,.0f}",
    ]
    lines += extra_lines or []
    if listing.state:
        lines.append(f"📍 State: {listing.state}")
    if listing.years_active:
        lines.append(f"📅 Years Active: {listing.years_active}")
    if listing.fleet_size:
        lines.append(f"🚚 Fleet Size: {listing.fleet_size}")
    if listing.safety_rating:
        lines.append(f"⭐ Safety Rating: {listing.safety_rating}")
    lines.append("")
    lines.append(f'🔗 <a href="{url}">View Listing</a>' if html else f"🔗 View Listing: {url}")
    return "\n".join(lines)


def result(success: bool, **fields: Any) -> dict[str, Any]:
    return {"success": success, **{key: value for key, value in fields.items() if value is not None}}

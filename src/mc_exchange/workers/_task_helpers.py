"""Async helpers behind the periodic Celery tasks.

Each helper opens its own ``AsyncSessionLocal`` session because Celery
calls it through ``asyncio.run()``, so there is a fresh event loop per
invocation.  They are kept apart from ``tasks.py`` so they can be tested
without importing the Celery application.
"""

from __future__ import annotations

from typing import Any

from mc_exchange.core.auth_service import AuthService
from mc_exchange.core.credit_service import CreditService
from mc_exchange.core.database import AsyncSessionLocal
from mc_exchange.core.offer_service import OfferService


async def run_monthly_renewals() -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as db:
        return await CreditService(db).process_monthly_renewals()


async def run_expired_subscriptions() -> int:
    async with AsyncSessionLocal() as db:
        return await CreditService(db).process_expired_subscriptions()


async def run_token_cleanup() -> dict[str, int]:
    async with AsyncSessionLocal() as db:
        return await AuthService(db).cleanup_expired_tokens()


async def run_offer_expiry() -> int:
    async with AsyncSessionLocal() as db:
        return await OfferService(db).expire_stale_offers()

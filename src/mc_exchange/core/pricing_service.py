"""Effective pricing: compiled-in defaults merged with ``platform_settings``.

Administrators can override any numeric price, fee or credit amount by
writing a ``platform_settings`` row (``starter_credits``,
``professional_price_monthly``, ``deposit_percentage``, ``credit_packs`` ...).
The merged result is cached in-process for five minutes; writes through
:meth:`PricingService.update_config` clear the cache immediately.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.config.pricing import (
    CREDIT_PACKS,
    PLATFORM_FEES,
    SUBSCRIPTION_PLANS,
    CreditPack,
    PlatformFees,
    SubscriptionPlanConfig,
)
from mc_exchange.config.settings import get_settings
from mc_exchange.core.models.admin import PlatformSetting
from mc_exchange.core.models.enums import SettingType

logger = structlog.get_logger(__name__)

CACHE_TTL_SECONDS = 300

_FEE_FIELDS = (
    "listing_fee",
    "premium_listing_fee",
    "transaction_fee_percentage",
    "deposit_percentage",
    "min_deposit",
    "max_deposit",
    "consultation_fee",
)


@dataclass(frozen=True)
class PricingConfig:
    plans: dict[str, SubscriptionPlanConfig]
    fees: PlatformFees
    credit_packs: dict[str, CreditPack]
    stripe_price_ids: dict[str, str] = field(default_factory=dict)


_cache: Optional[tuple[float, PricingConfig]] = None


def clear_pricing_cache() -> None:
    global _cache
    _cache = None


# ---------------------------------------------------------------------------
# Setting value coercion
# ---------------------------------------------------------------------------


def parse_number(value: Optional[str], default: float) -> float:
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def parse_json(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


def coerce_setting(value: str, setting_type: str) -> Any:
    """Convert a stored setting string to its declared type.

    ``number`` becomes ``float``, ``boolean`` is ``value == "true"`` and
    ``json`` is parsed, falling back to the raw string when malformed.
    """
    if setting_type == SettingType.NUMBER:
        return parse_number(value, 0.0)
    if setting_type == SettingType.BOOLEAN:
        return value == "true"
    if setting_type == SettingType.JSON:
        return parse_json(value, value)
    return value


# ---------------------------------------------------------------------------
# PricingService
# ---------------------------------------------------------------------------


class PricingService:
    """Read and update the effective pricing configuration.

    Args:
        session: An open async session; only read unless
            :meth:`update_config` is called.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_config(self) -> PricingConfig:
        global _cache
        now = time.monotonic()
        if _cache is not None and now - _cache[0] < CACHE_TTL_SECONDS:
            return _cache[1]
        config = await self._load()
        _cache = (now, config)
        return config

    async def get_platform_fees(self) -> PlatformFees:
        return (await self.get_config()).fees

    async def get_consultation_fee(self) -> float:
        return (await self.get_config()).fees.consultation_fee

    async def get_plans(self) -> list[SubscriptionPlanConfig]:
        return list((await self.get_config()).plans.values())

    async def get_plan(self, plan_key: str) -> Optional[SubscriptionPlanConfig]:
        return (await self.get_config()).plans.get(str(plan_key).upper())

    async def get_credit_packs(self) -> list[CreditPack]:
        return list((await self.get_config()).credit_packs.values())

    async def get_credit_pack(self, pack_id: str) -> Optional[CreditPack]:
        return (await self.get_config()).credit_packs.get(pack_id)

    async def get_stripe_price_id(self, plan_key: str, yearly: bool) -> str:
        """Return the recurring Stripe price id for a plan, or ``""``."""
        config = await self.get_config()
        suffix = "yearly" if yearly else "monthly"
        override = config.stripe_price_ids.get(f"{str(plan_key).lower()}_{suffix}")
        return override or get_settings().stripe_price_id(str(plan_key), yearly)

    async def update_config(self, updates: dict[str, Any]) -> PricingConfig:
        """Persist flat ``{setting_key: value}`` overrides and reload.

        Args:
            updates: Keys such as ``"deposit_percentage"`` or
                ``"starter_price_monthly"``.  Lists and dicts are stored as
                JSON, numbers as ``number`` settings, the rest as strings.
        """
        existing = {
            row.key: row
            for row in (await self.session.execute(select(PlatformSetting))).scalars()
        }
        for key, value in updates.items():
            if isinstance(value, (list, dict)):
                raw, kind = json.dumps(value), SettingType.JSON
            elif isinstance(value, bool):
                raw, kind = str(value).lower(), SettingType.BOOLEAN
            elif isinstance(value, (int, float)):
                raw, kind = str(value), SettingType.NUMBER
            else:
                raw, kind = str(value), SettingType.STRING
            row = existing.get(key)
            if row is None:
                self.session.add(PlatformSetting(key=key, value=raw, type=kind.value))
            else:
                row.value = raw
                row.type = kind.value
        await self.session.commit()
        clear_pricing_cache()
        logger.info("pricing_config_updated", keys=sorted(updates))
        return await self.get_config()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _load(self) -> PricingConfig:
        rows = (await self.session.execute(select(PlatformSetting))).scalars().all()
        values = {row.key: row.value for row in rows}

        plans: dict[str, SubscriptionPlanConfig] = {}
        stripe_ids: dict[str, str] = {}
        for key, plan in SUBSCRIPTION_PLANS.items():
            prefix = key.lower()
            plans[key] = replace(
                plan,
                credits=int(parse_number(values.get(f"{prefix}_credits"), plan.credits)),
                price_monthly=parse_number(
                    values.get(f"{prefix}_price_monthly"), plan.price_monthly
                ),
                price_yearly=parse_number(
                    values.get(f"{prefix}_price_yearly"), plan.price_yearly
                ),
                features=tuple(
                    parse_json(values.get(f"{prefix}_features"), list(plan.features))
                ),
            )
            for suffix in ("monthly", "yearly"):
                price_id = values.get(f"{prefix}_stripe_{suffix}")
                if price_id:
                    stripe_ids[f"{prefix}_{suffix}"] = price_id

        fees = replace(
            PLATFORM_FEES,
            **{
                name: parse_number(values.get(name), getattr(PLATFORM_FEES, name))
                for name in _FEE_FIELDS
            },
        )

        packs = dict(CREDIT_PACKS)
        raw_packs = parse_json(values.get("credit_packs"), None)
        if isinstance(raw_packs, list):
            try:
                packs = {
                    item["id"]: CreditPack(
                        key=item["id"],
                        credits=int(item["credits"]),
                        price=float(item["price"]),
                    )
                    for item in raw_packs
                }
            except (KeyError, TypeError, ValueError):
                logger.warning("invalid_credit_packs_setting")

        return PricingConfig(
            plans=plans,
            fees=fees,
            credit_packs=packs,
            stripe_price_ids=stripe_ids,
        )

"""Configuration package for MC Exchange.

Re-exports the most commonly used configuration symbols so that
callers can write::

    from mc_exchange.config import get_settings, SUBSCRIPTION_PLANS, PLATFORM_FEES

without needing to know which sub-module each symbol lives in.
"""

from __future__ import annotations

from mc_exchange.config.pricing import (
    CREDIT_PACKS,
    LISTING_UNLOCK_COST,
    OFFER_DEFAULT_EXPIRY_DAYS,
    PLATFORM_FEES,
    SUBSCRIPTION_PLANS,
    TRUST_SCORE_WEIGHTS,
    CreditPack,
    PlatformFees,
    SubscriptionPlanConfig,
)
from mc_exchange.config.settings import (
    Settings,
    get_public_config,
    get_settings,
    validate_config,
)

__all__ = [
    # settings
    "Settings",
    "get_settings",
    "validate_config",
    "get_public_config",
    # pricing
    "SubscriptionPlanConfig",
    "SUBSCRIPTION_PLANS",
    "PlatformFees",
    "PLATFORM_FEES",
    "CreditPack",
    "CREDIT_PACKS",
    "TRUST_SCORE_WEIGHTS",
    "LISTING_UNLOCK_COST",
    "OFFER_DEFAULT_EXPIRY_DAYS",
]

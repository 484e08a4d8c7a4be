"""Default pricing, fee and trust-score constants.

These are the compiled-in defaults.  Administrators may override the
numeric values at runtime through ``platform_settings`` rows; the
:class:`~mc_exchange.core.pricing_service.PricingService` merges the two and
caches the result.

Deposit and fee formulas:
  - deposit      = clamp(price * deposit_percentage / 100, min_deposit, max_deposit)
  - platform fee = price * transaction_fee_percentage / 100
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SubscriptionPlanConfig:
    """Catalog entry for one subscription plan.

    Attributes:
        key: Plan identifier stored on ``subscriptions.plan``.
        name: Display name.
        credits: Credits granted per billing month.
        price_monthly: Monthly price in USD.
        price_yearly: Yearly price in USD.
        features: Marketing bullet points shown on the pricing page.
    """

    key: str
    name: str
    credits: int
    price_monthly: float
    price_yearly: float
    features: tuple[str, ...] = field(default_factory=tuple)


SUBSCRIPTION_PLANS: dict[str, SubscriptionPlanConfig] = {
    "STARTER": SubscriptionPlanConfig(
        key="STARTER",
        name="Starter",
        credits=4,
        price_monthly=99.0,
        price_yearly=950.0,
        features=(
            "4 listing unlocks per month",
            "Full MC details access",
            "Email support",
        ),
    ),
    "PROFESSIONAL": SubscriptionPlanConfig(
        key="PROFESSIONAL",
        name="Professional",
        credits=10,
        price_monthly=199.0,
        price_yearly=1910.0,
        features=(
            "10 listing unlocks per month",
            "Full MC details access",
            "Priority support",
            "Saved searches",
        ),
    ),
    "ENTERPRISE": SubscriptionPlanConfig(
        key="ENTERPRISE",
        name="Enterprise",
        credits=25,
        price_monthly=399.0,
        price_yearly=3830.0,
        features=(
            "25 listing unlocks per month",
            "Full MC details access",
            "Dedicated account manager",
            "API access",
        ),
    ),
}
"""Plan catalog keyed by plan name."""


@dataclass(frozen=True)
class PlatformFees:
    """Fee schedule applied to listings and escrow transactions.

    Attributes:
        listing_fee: One-off fee for a standard listing (USD).
        premium_listing_fee: One-off fee for a premium listing (USD).
        transaction_fee_percentage: Platform commission on the agreed price.
        deposit_percentage: Share of the agreed price required as deposit.
        min_deposit: Lower bound of the deposit (USD).
        max_deposit: Upper bound of the deposit (USD).
        consultation_fee: Price of a paid consultation booking (USD).
    """

    listing_fee: float = 49.99
    premium_listing_fee: float = 199.99
    transaction_fee_percentage: float = 3.0
    deposit_percentage: float = 10.0
    min_deposit: float = 500.0
    max_deposit: float = 10_000.0
    consultation_fee: float = 100.0

    def deposit_for(self, price: float) -> float:
        """Return the escrow deposit for an agreed *price*."""
        raw = price * self.deposit_percentage / 100
        return round(min(max(raw, self.min_deposit), self.max_deposit), 2)

    def platform_fee_for(self, price: float) -> float:
        """Return the platform commission for an agreed *price*."""
        return round(price * self.transaction_fee_percentage / 100, 2)


PLATFORM_FEES = PlatformFees()


@dataclass(frozen=True)
class CreditPack:
    """A one-off credit bundle purchasable with a card payment."""

    key: str
    credits: int
    price: float


CREDIT_PACKS: dict[str, CreditPack] = {
    "pack_5": CreditPack(key="pack_5", credits=5, price=24.99),
    "pack_10": CreditPack(key="pack_10", credits=10, price=44.99),
    "pack_25": CreditPack(key="pack_25", credits=25, price=99.99),
}


TRUST_SCORE_WEIGHTS: dict[str, int] = {
    "COMPLETED_DEALS": 10,
    "POSITIVE_REVIEW": 5,
    "NEGATIVE_REVIEW": -10,
    "VERIFIED_SELLER": 20,
    "ACCOUNT_AGE_MONTH": 1,
    "MAX_SCORE": 100,
    "BASE_SCORE": 50,
}
"""Points applied by :func:`mc_exchange.core.user_service.calculate_trust_score`."""

LISTING_UNLOCK_COST: int = 1
"""Credits consumed when a buyer unlocks a listing's seller contact details."""

OFFER_DEFAULT_EXPIRY_DAYS: int = 7

"""Factory Boy factories for test data generation.

Available factories
-------------------
UserFactory           : buyer user dict
SellerUserFactory     : verified seller user dict
AdminUserFactory      : admin user dict
BlockedUserFactory    : blocked user dict
ListingFactory        : ACTIVE MC listing dict
OfferFactory          : PENDING offer dict
TransactionFactory    : AWAITING_DEPOSIT transaction dict
PaymentFactory        : PENDING manual payment dict

The ``build_*`` helpers turn those dicts into transient ORM objects.
"""

from __future__ import annotations

from tests.factories.listings import (
    ListingFactory,
    OfferFactory,
    PaymentFactory,
    TransactionFactory,
    build_listing,
    build_offer,
    build_payment,
    build_transaction,
)
from tests.factories.users import (
    AdminUserFactory,
    BlockedUserFactory,
    SellerUserFactory,
    UserFactory,
    build_user,
)

__all__ = [
    "AdminUserFactory",
    "BlockedUserFactory",
    "ListingFactory",
    "OfferFactory",
    "PaymentFactory",
    "SellerUserFactory",
    "TransactionFactory",
    "UserFactory",
    "build_listing",
    "build_offer",
    "build_payment",
    "build_transaction",
    "build_user",
]

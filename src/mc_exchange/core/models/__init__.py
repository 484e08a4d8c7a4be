"""ORM model package.

Importing this package registers every model on ``Base.metadata`` so that
Alembic autogenerate and ``create_all`` see the full schema.
"""

from __future__ import annotations

from mc_exchange.core.models.admin import AdminAction, PlatformSetting
from mc_exchange.core.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from mc_exchange.core.models.consultations import Consultation
from mc_exchange.core.models.credits import CreditTransaction, Subscription
from mc_exchange.core.models.listings import (
    Document,
    Listing,
    PremiumRequest,
    SavedListing,
    UnlockedListing,
)
from mc_exchange.core.models.messages import Message
from mc_exchange.core.models.notifications import Notification
from mc_exchange.core.models.offers import Offer
from mc_exchange.core.models.transactions import (
    Dispute,
    Payment,
    Review,
    Transaction,
    TransactionMessage,
    TransactionTimeline,
)
from mc_exchange.core.models.users import (
    EmailVerificationToken,
    PasswordResetToken,
    RefreshToken,
    User,
)

__all__ = [
    # base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # users
    "User",
    "RefreshToken",
    "PasswordResetToken",
    "EmailVerificationToken",
    # listings
    "Listing",
    "Document",
    "SavedListing",
    "UnlockedListing",
    "PremiumRequest",
    # offers & transactions
    "Offer",
    "Transaction",
    "TransactionMessage",
    "TransactionTimeline",
    "Payment",
    "Dispute",
    "Review",
    # credits
    "CreditTransaction",
    "Subscription",
    # messaging, notifications & admin
    "Message",
    "Notification",
    "AdminAction",
    "PlatformSetting",
    "Consultation",
]

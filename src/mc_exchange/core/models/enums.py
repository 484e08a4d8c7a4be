"""String enumerations stored in ``VARCHAR`` columns.

Members compare equal to their raw string values, so rows loaded from the
database (plain ``str``) and enum members can be mixed freely in service
code.  ``str(member)`` returns the value, which keeps f-strings readable.
"""

from __future__ import annotations

import enum


class _ValueEnum(str, enum.Enum):
    def __str__(self) -> str:
        return self.value


class UserRole(_ValueEnum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class UserStatus(_ValueEnum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BLOCKED = "BLOCKED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


class ListingStatus(_ValueEnum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    RESERVED = "RESERVED"
    SUSPENDED = "SUSPENDED"
    REJECTED = "REJECTED"


class ListingVisibility(_ValueEnum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    UNLISTED = "UNLISTED"


class SafetyRating(_ValueEnum):
    SATISFACTORY = "SATISFACTORY"
    CONDITIONAL = "CONDITIONAL"
    UNSATISFACTORY = "UNSATISFACTORY"
    NONE = "NONE"


class AmazonRelayStatus(_ValueEnum):
    NONE = "NONE"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class DocumentType(_ValueEnum):
    INSURANCE = "INSURANCE"
    UCC_FILING = "UCC_FILING"
    AUTHORITY = "AUTHORITY"
    SAFETY_RECORD = "SAFETY_RECORD"
    BILL_OF_SALE = "BILL_OF_SALE"
    OTHER = "OTHER"


class DocumentStatus(_ValueEnum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class OfferStatus(_ValueEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    COUNTERED = "COUNTERED"
    EXPIRED = "EXPIRED"
    WITHDRAWN = "WITHDRAWN"


class TransactionStatus(_ValueEnum):
    AWAITING_DEPOSIT = "AWAITING_DEPOSIT"
    DEPOSIT_RECEIVED = "DEPOSIT_RECEIVED"
    IN_REVIEW = "IN_REVIEW"
    BUYER_APPROVED = "BUYER_APPROVED"
    SELLER_APPROVED = "SELLER_APPROVED"
    BOTH_APPROVED = "BOTH_APPROVED"
    ADMIN_FINAL_REVIEW = "ADMIN_FINAL_REVIEW"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


class PaymentStatus(_ValueEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(_ValueEnum):
    STRIPE = "STRIPE"
    ZELLE = "ZELLE"
    WIRE = "WIRE"
    CHECK = "CHECK"


class PaymentType(_ValueEnum):
    DEPOSIT = "DEPOSIT"
    FINAL_PAYMENT = "FINAL_PAYMENT"
    CREDIT_PURCHASE = "CREDIT_PURCHASE"
    SUBSCRIPTION = "SUBSCRIPTION"
    LISTING_FEE = "LISTING_FEE"
    REFUND = "REFUND"


class SubscriptionPlan(_ValueEnum):
    STARTER = "STARTER"
    PROFESSIONAL = "PROFESSIONAL"
    ENTERPRISE = "ENTERPRISE"


class SubscriptionStatus(_ValueEnum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    PAST_DUE = "PAST_DUE"


class CreditTransactionType(_ValueEnum):
    PURCHASE = "PURCHASE"
    USAGE = "USAGE"
    REFUND = "REFUND"
    BONUS = "BONUS"
    EXPIRED = "EXPIRED"
    SUBSCRIPTION = "SUBSCRIPTION"


class NotificationType(_ValueEnum):
    OFFER = "OFFER"
    MESSAGE = "MESSAGE"
    VERIFICATION = "VERIFICATION"
    REVIEW = "REVIEW"
    TRANSACTION = "TRANSACTION"
    SYSTEM = "SYSTEM"
    PAYMENT = "PAYMENT"


class PremiumRequestStatus(_ValueEnum):
    PENDING = "PENDING"
    CONTACTED = "CONTACTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class DisputeStatus(_ValueEnum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class ConsultationStatus(_ValueEnum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class SettingType(_ValueEnum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"

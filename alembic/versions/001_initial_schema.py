"""Initial schema: all MC Exchange tables and indexes.

Creates the complete database schema in FK-dependency order:

1. users                     : accounts, company details, credit counters
2. refresh_tokens            : hashed refresh tokens (FK → users)
3. password_reset_tokens     : one-hour reset tokens (FK → users)
4. email_verification_tokens : 24-hour verification tokens (FK → users)
5. listings                  : MC authorities for sale (FK → users)
6. saved_listings            : buyer bookmarks (FK → users, listings)
7. unlocked_listings         : credit-paid contact reveals (FK → users, listings)
8. premium_requests          : buyer requests on premium listings
9. offers                    : buyer offers and counter-offers
10. transactions             : escrow workflow (FK → listings, offers, users)
11. transaction_messages     : party chat (FK → transactions)
12. transaction_timeline     : status audit trail (FK → transactions)
13. payments                 : deposits, final payments, purchases, fees
14. disputes                 : at most one OPEN per transaction
15. reviews                  : 1–5 star ratings after completion
16. documents                : uploaded files on listings or transactions
17. credit_transactions      : credit ledger (FK → users)
18. subscriptions            : one row per user (FK → users)
19. notifications            : in-app notifications (FK → users)
20. admin_actions            : moderation audit log (FK → users)
21. platform_settings        : typed key/value settings
22. consultations            : paid expert consultation bookings

Enum-like columns (status, role, type) are VARCHAR; allowed values are
enforced in the service layer.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _id() -> sa.Column:
    return sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _ts(name: str, *, nullable: bool = True, now: bool = False) -> sa.Column:
    kwargs = {"server_default": sa.text("NOW()")} if now else {}
    return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=nullable, **kwargs)


def _timestamps() -> list[sa.Column]:
    return [_ts("created_at", nullable=False, now=True), _ts("updated_at", nullable=False, now=True)]


def _fk(name: str, target: str, *, ondelete: str = "CASCADE", nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.UUID(), sa.ForeignKey(f"{target}.id", ondelete=ondelete), nullable=nullable)


def _money(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable)


def _flag(name: str) -> sa.Column:
    return sa.Column(name, sa.Boolean, nullable=False, server_default=sa.text("false"))


def _count(name: str, default: int = 0) -> sa.Column:
    return sa.Column(name, sa.Integer, nullable=False, server_default=sa.text(str(default)))


def _status(default: str, length: int = 20) -> sa.Column:
    return sa.Column("status", sa.String(length), nullable=False, server_default=sa.text(f"'{default}'"))


def _metadata() -> sa.Column:
    return sa.Column("metadata", JSONB, nullable=True, server_default=sa.text("'{}'"))


# ---------------------------------------------------------------------------
# upgrade
# ---------------------------------------------------------------------------

def upgrade() -> None:
    """Create all tables and indexes."""

    # ------------------------------------------------------------------
    # 1. users
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("hashed_password", sa.String(1024), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("avatar", sa.String(500), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'BUYER'")),
        _status("ACTIVE", 32),
        _flag("verified"),
        _ts("verified_at"),
        _flag("email_verified"),
        _count("trust_score", 50),
        _ts("member_since", nullable=False, now=True),
        _ts("last_login_at"),
        sa.Column("company_name", sa.String(200), nullable=True),
        sa.Column("company_address", sa.String(300), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state", sa.String(2), nullable=True),
        sa.Column("zip_code", sa.String(10), nullable=True),
        sa.Column("ein", sa.String(20), nullable=True),
        _flag("seller_verified"),
        _ts("seller_verified_at"),
        _count("total_credits"),
        _count("used_credits"),
        sa.Column("stripe_customer_id", sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_status", "users", ["status"])
    op.create_index("ix_users_stripe_customer_id", "users", ["stripe_customer_id"])

    # ------------------------------------------------------------------
    # 2–4. auth tokens
    # ------------------------------------------------------------------
    op.create_table(
        "refresh_tokens",
        _id(),
        _fk("user_id", "users"),
        sa.Column("token_hash", sa.String(64), nullable=False),
        _ts("expires_at", nullable=False),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])
    op.create_index("ix_refresh_tokens_token_hash", "refresh_tokens", ["token_hash"], unique=True)

    op.create_table(
        "password_reset_tokens",
        _id(),
        _fk("user_id", "users"),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        _ts("expires_at", nullable=False),
        _ts("used_at"),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index("ix_password_reset_tokens_user_id", "password_reset_tokens", ["user_id"])

    op.create_table(
        "email_verification_tokens",
        _id(),
        _fk("user_id", "users"),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        _ts("expires_at", nullable=False),
        _ts("verified_at"),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index(
        "ix_email_verification_tokens_user_id", "email_verification_tokens", ["user_id"]
    )

    # ------------------------------------------------------------------
    # 5. listings
    # ------------------------------------------------------------------
    op.create_table(
        "listings",
        _id(),
        sa.Column("mc_number", sa.String(20), nullable=False),
        sa.Column("dot_number", sa.String(20), nullable=False),
        sa.Column("legal_name", sa.String(300), nullable=False),
        sa.Column("dba_name", sa.String(300), nullable=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        _money("price"),
        _flag("is_premium"),
        _status("DRAFT", 32),
        sa.Column("visibility", sa.String(20), nullable=False, server_default=sa.text("'PUBLIC'")),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("state", sa.String(2), nullable=False),
        sa.Column("address", sa.String(300), nullable=True),
        _count("years_active"),
        _count("fleet_size"),
        _count("total_drivers"),
        sa.Column("safety_rating", sa.String(20), nullable=False, server_default=sa.text("'NONE'")),
        sa.Column("safer_score", sa.String(20), nullable=True),
        _flag("insurance_on_file"),
        _money("bipd_coverage", nullable=True),
        _money("cargo_coverage", nullable=True),
        _money("bond_amount", nullable=True),
        sa.Column("amazon_status", sa.String(20), nullable=False, server_default=sa.text("'NONE'")),
        sa.Column("amazon_relay_score", sa.String(10), nullable=True),
        _flag("highway_setup"),
        _flag("selling_with_email"),
        _flag("selling_with_phone"),
        sa.Column("contact_email", sa.String(320), nullable=True),
        sa.Column("contact_phone", sa.String(40), nullable=True),
        sa.Column("cargo_types", JSONB, nullable=True),
        sa.Column("fmcsa_data", JSONB, nullable=True),
        sa.Column("authority_history", JSONB, nullable=True),
        sa.Column("insurance_history", JSONB, nullable=True),
        _count("views"),
        _count("saves"),
        _flag("listing_fee_paid"),
        sa.Column("review_notes", sa.Text, nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        _fk("reviewed_by", "users", ondelete="SET NULL", nullable=True),
        _ts("reviewed_at"),
        _ts("published_at"),
        _ts("sold_at"),
        _fk("seller_id", "users"),
        *_timestamps(),
    )
    op.create_index("ix_listings_mc_number", "listings", ["mc_number"])
    op.create_index("ix_listings_dot_number", "listings", ["dot_number"])
    op.create_index("ix_listings_status", "listings", ["status"])
    op.create_index("ix_listings_state", "listings", ["state"])
    op.create_index("ix_listings_seller_id", "listings", ["seller_id"])

    # ------------------------------------------------------------------
    # 6–8. listing relations
    # ------------------------------------------------------------------
    op.create_table(
        "saved_listings",
        _id(),
        _fk("user_id", "users"),
        _fk("listing_id", "listings"),
        _ts("created_at", nullable=False, now=True),
        sa.UniqueConstraint("user_id", "listing_id", name="uq_saved_listings_user_listing"),
    )
    op.create_index("ix_saved_listings_user_id", "saved_listings", ["user_id"])

    op.create_table(
        "unlocked_listings",
        _id(),
        _fk("user_id", "users"),
        _fk("listing_id", "listings"),
        _count("credits_used", 1),
        _ts("created_at", nullable=False, now=True),
        sa.UniqueConstraint("user_id", "listing_id", name="uq_unlocked_listings_user_listing"),
    )
    op.create_index("ix_unlocked_listings_user_id", "unlocked_listings", ["user_id"])

    op.create_table(
        "premium_requests",
        _id(),
        _status("PENDING"),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("admin_notes", sa.Text, nullable=True),
        _ts("contacted_at"),
        _fk("contacted_by", "users", ondelete="SET NULL", nullable=True),
        _fk("buyer_id", "users"),
        _fk("listing_id", "listings"),
        *_timestamps(),
        sa.UniqueConstraint("buyer_id", "listing_id", name="uq_premium_requests_buyer_listing"),
    )
    op.create_index("ix_premium_requests_status", "premium_requests", ["status"])

    # ------------------------------------------------------------------
    # 9. offers
    # ------------------------------------------------------------------
    op.create_table(
        "offers",
        _id(),
        _money("amount"),
        sa.Column("message", sa.Text, nullable=True),
        _status("PENDING"),
        _money("counter_amount", nullable=True),
        sa.Column("counter_message", sa.Text, nullable=True),
        _ts("counter_at"),
        _ts("responded_at"),
        _ts("expires_at"),
        _fk("listing_id", "listings"),
        _fk("buyer_id", "users"),
        _fk("seller_id", "users"),
        *_timestamps(),
    )
    op.create_index("ix_offers_status", "offers", ["status"])
    op.create_index("ix_offers_listing_id", "offers", ["listing_id"])
    op.create_index("ix_offers_buyer_id", "offers", ["buyer_id"])
    op.create_index("ix_offers_seller_id", "offers", ["seller_id"])

    # ------------------------------------------------------------------
    # 10. transactions
    # ------------------------------------------------------------------
    op.create_table(
        "transactions",
        _id(),
        _status("AWAITING_DEPOSIT", 32),
        _money("agreed_price"),
        _money("deposit_amount", nullable=True),
        _money("platform_fee", nullable=True),
        _money("final_payment_amount", nullable=True),
        _flag("buyer_approved"),
        _ts("buyer_approved_at"),
        _flag("seller_approved"),
        _ts("seller_approved_at"),
        _flag("admin_approved"),
        _ts("admin_approved_at"),
        _flag("buyer_accepted_terms"),
        _ts("buyer_accepted_terms_at"),
        _flag("seller_accepted_terms"),
        _ts("seller_accepted_terms_at"),
        _ts("deposit_paid_at"),
        sa.Column("deposit_payment_method", sa.String(20), nullable=True),
        sa.Column("deposit_payment_ref", sa.String(200), nullable=True),
        _ts("final_paid_at"),
        sa.Column("final_payment_method", sa.String(20), nullable=True),
        sa.Column("final_payment_ref", sa.String(200), nullable=True),
        sa.Column("escrow_status", sa.String(40), nullable=True),
        _ts("escrow_release_at"),
        sa.Column("dispute_reason", sa.Text, nullable=True),
        _ts("dispute_opened_at"),
        _ts("dispute_resolved_at"),
        sa.Column("dispute_resolution", sa.Text, nullable=True),
        sa.Column("buyer_notes", sa.Text, nullable=True),
        sa.Column("seller_notes", sa.Text, nullable=True),
        sa.Column("admin_notes", sa.Text, nullable=True),
        _ts("completed_at"),
        _ts("cancelled_at"),
        _fk("listing_id", "listings", ondelete="RESTRICT"),
        sa.Column(
            "offer_id",
            sa.UUID(),
            sa.ForeignKey("offers.id", ondelete="RESTRICT"),
            nullable=False,
            unique=True,
        ),
        _fk("buyer_id", "users", ondelete="RESTRICT"),
        _fk("seller_id", "users", ondelete="RESTRICT"),
        _fk("admin_id", "users", ondelete="SET NULL", nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_transactions_status", "transactions", ["status"])
    op.create_index("ix_transactions_listing_id", "transactions", ["listing_id"])
    op.create_index("ix_transactions_buyer_id", "transactions", ["buyer_id"])
    op.create_index("ix_transactions_seller_id", "transactions", ["seller_id"])

    # ------------------------------------------------------------------
    # 11–12. messages and timeline
    # ------------------------------------------------------------------
    op.create_table(
        "transaction_messages",
        _id(),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("sender_role", sa.String(20), nullable=False),
        _fk("sender_id", "users"),
        _fk("transaction_id", "transactions"),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index(
        "ix_transaction_messages_transaction_id", "transaction_messages", ["transaction_id"]
    )

    op.create_table(
        "transaction_timeline",
        _id(),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        _fk("actor_id", "users", ondelete="SET NULL", nullable=True),
        sa.Column("actor_role", sa.String(20), nullable=True),
        _fk("transaction_id", "transactions"),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index(
        "ix_transaction_timeline_transaction_id", "transaction_timeline", ["transaction_id"]
    )

    # ------------------------------------------------------------------
    # 13. payments
    # ------------------------------------------------------------------
    op.create_table(
        "payments",
        _id(),
        sa.Column("type", sa.String(32), nullable=False),
        _money("amount"),
        _status("PENDING"),
        sa.Column("method", sa.String(20), nullable=True),
        sa.Column("stripe_payment_id", sa.String(200), nullable=True),
        sa.Column("stripe_intent_id", sa.String(200), nullable=True),
        sa.Column("reference", sa.String(200), nullable=True),
        _fk("verified_by", "users", ondelete="SET NULL", nullable=True),
        _ts("verified_at"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
        _metadata(),
        _ts("completed_at"),
        _fk("transaction_id", "transactions", ondelete="SET NULL", nullable=True),
        _fk("user_id", "users"),
        *_timestamps(),
    )
    op.create_index("ix_payments_type", "payments", ["type"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_stripe_intent_id", "payments", ["stripe_intent_id"])
    op.create_index("ix_payments_transaction_id", "payments", ["transaction_id"])
    op.create_index("ix_payments_user_id", "payments", ["user_id"])

    # ------------------------------------------------------------------
    # 14–15. disputes and reviews
    # ------------------------------------------------------------------
    op.create_table(
        "disputes",
        _id(),
        _status("OPEN"),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("previous_status", sa.String(32), nullable=False),
        sa.Column("resolution", sa.Text, nullable=True),
        _ts("resolved_at"),
        _fk("resolved_by", "users", ondelete="SET NULL", nullable=True),
        _fk("opened_by", "users"),
        _fk("transaction_id", "transactions"),
        *_timestamps(),
    )
    op.create_index("ix_disputes_status", "disputes", ["status"])
    op.create_index("ix_disputes_transaction_id", "disputes", ["transaction_id"])
    op.create_index(
        "uq_disputes_open_per_transaction",
        "disputes",
        ["transaction_id"],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "reviews",
        _id(),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        _fk("from_user_id", "users"),
        _fk("to_user_id", "users"),
        _fk("transaction_id", "transactions"),
        *_timestamps(),
        sa.UniqueConstraint("from_user_id", "transaction_id", name="uq_reviews_author_transaction"),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )
    op.create_index("ix_reviews_to_user_id", "reviews", ["to_user_id"])

    # ------------------------------------------------------------------
    # 16. documents
    # ------------------------------------------------------------------
    op.create_table(
        "documents",
        _id(),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("size", sa.Integer, nullable=False),
        sa.Column("mime_type", sa.String(120), nullable=False),
        _status("PENDING"),
        _ts("verified_at"),
        _fk("verified_by", "users", ondelete="SET NULL", nullable=True),
        _fk("listing_id", "listings", nullable=True),
        _fk("transaction_id", "transactions", nullable=True),
        _fk("uploader_id", "users"),
        *_timestamps(),
    )
    op.create_index("ix_documents_status", "documents", ["status"])
    op.create_index("ix_documents_listing_id", "documents", ["listing_id"])
    op.create_index("ix_documents_transaction_id", "documents", ["transaction_id"])
    op.create_index("ix_documents_uploader_id", "documents", ["uploader_id"])

    # ------------------------------------------------------------------
    # 17–18. credits and subscriptions
    # ------------------------------------------------------------------
    op.create_table(
        "credit_transactions",
        _id(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("balance", sa.Integer, nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("reference", sa.String(200), nullable=True),
        _fk("user_id", "users"),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index("ix_credit_transactions_type", "credit_transactions", ["type"])
    op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"])
    op.create_index("ix_credit_transactions_created_at", "credit_transactions", ["created_at"])

    op.create_table(
        "subscriptions",
        _id(),
        sa.Column("plan", sa.String(20), nullable=False),
        _status("ACTIVE"),
        _money("price_monthly"),
        _money("price_yearly"),
        _flag("is_yearly"),
        sa.Column("credits_per_month", sa.Integer, nullable=False),
        _count("credits_remaining"),
        sa.Column("stripe_sub_id", sa.String(200), nullable=True, unique=True),
        sa.Column("stripe_customer_id", sa.String(200), nullable=True),
        _ts("start_date", nullable=False),
        _ts("end_date"),
        _ts("renewal_date"),
        _ts("cancelled_at"),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    # ------------------------------------------------------------------
    # 19. notifications
    # ------------------------------------------------------------------
    op.create_table(
        "notifications",
        _id(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        _flag("read"),
        _ts("read_at"),
        sa.Column("link", sa.String(500), nullable=True),
        _metadata(),
        _fk("user_id", "users"),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    # ------------------------------------------------------------------
    # 20–21. admin
    # ------------------------------------------------------------------
    op.create_table(
        "admin_actions",
        _id(),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("target_type", sa.String(30), nullable=False),
        sa.Column("target_id", sa.UUID(), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        _metadata(),
        _fk("admin_id", "users"),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index("ix_admin_actions_action", "admin_actions", ["action"])
    op.create_index("ix_admin_actions_admin_id", "admin_actions", ["admin_id"])
    op.create_index("ix_admin_actions_created_at", "admin_actions", ["created_at"])

    op.create_table(
        "platform_settings",
        _id(),
        sa.Column("key", sa.String(100), nullable=False, unique=True),
        sa.Column("value", sa.Text, nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default=sa.text("'string'")),
        *_timestamps(),
    )

    # ------------------------------------------------------------------
    # 22. consultations
    # ------------------------------------------------------------------
    op.create_table(
        "consultations",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(40), nullable=False),
        sa.Column("preferred_date", sa.String(20), nullable=False),
        sa.Column("preferred_time", sa.String(20), nullable=False),
        sa.Column("message", sa.Text, nullable=False, server_default=sa.text("''")),
        _status("PENDING_PAYMENT"),
        _money("amount"),
        sa.Column("stripe_session_id", sa.String(200), nullable=True, unique=True),
        sa.Column("stripe_payment_intent_id", sa.String(200), nullable=True),
        _ts("paid_at"),
        _ts("scheduled_at"),
        _ts("completed_at"),
        _ts("contacted_at"),
        _fk("contacted_by", "users", ondelete="SET NULL", nullable=True),
        sa.Column("admin_notes", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_consultations_email", "consultations", ["email"])
    op.create_index("ix_consultations_status", "consultations", ["status"])


# ---------------------------------------------------------------------------
# downgrade
# ---------------------------------------------------------------------------

def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("consultations")
    op.drop_table("platform_settings")
    op.drop_table("admin_actions")
    op.drop_table("notifications")
    op.drop_table("subscriptions")
    op.drop_table("credit_transactions")
    op.drop_table("documents")
    op.drop_table("reviews")
    op.drop_table("disputes")
    op.drop_table("payments")
    op.drop_table("transaction_timeline")
    op.drop_table("transaction_messages")
    op.drop_table("transactions")
    op.drop_table("offers")
    op.drop_table("premium_requests")
    op.drop_table("unlocked_listings")
    op.drop_table("saved_listings")
    op.drop_table("listings")
    op.drop_table("email_verification_tokens")
    op.drop_table("password_reset_tokens")
    op.drop_table("refresh_tokens")
    op.drop_table("users")

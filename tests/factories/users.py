"""Factory Boy factories for User rows.

Usage in tests::

    from tests.factories.users import UserFactory, build_user

    # Build a dict (no DB write)
    user_data = UserFactory.build()

    # Build a transient ORM object with overrides
    seller = build_user(role="SELLER", total_credits=10)
"""

from __future__ import annotations

import datetime
import uuid
from typing import Any

import factory

from mc_exchange.core.models.users import User
from mc_exchange.core.user_manager import password_helper

TEST_PASSWORD = "Testpass123!"

# Hashed once at import; hashing per user would slow every test down.
TEST_PASSWORD_HASH = password_helper.hash(TEST_PASSWORD)


class UserFactory(factory.Factory):
    """Factory for User model dicts.

    Returns plain dicts rather than ORM objects so that tests can control
    when and how objects are persisted.  Column defaults only apply on
    flush, so every boolean and counter is set explicitly here.
    """

    class Meta:
        model = dict

    id = factory.LazyFunction(uuid.uuid4)
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    name = factory.Faker("name")
    hashed_password = TEST_PASSWORD_HASH
    role = "BUYER"
    status = "ACTIVE"
    verified = False
    email_verified = True
    trust_score = 50
    total_credits = 0
    used_credits = 0
    seller_verified = False
    member_since = factory.LazyFunction(lambda: datetime.datetime.now(datetime.timezone.utc))
    stripe_customer_id = None


class SellerUserFactory(UserFactory):
    role = "SELLER"
    email = factory.Sequence(lambda n: f"seller{n}@example.com")
    verified = True
    seller_verified = True


class AdminUserFactory(UserFactory):
    role = "ADMIN"
    email = factory.Sequence(lambda n: f"admin{n}@example.com")
    name = factory.Sequence(lambda n: f"Admin User {n}")
    verified = True


class BlockedUserFactory(UserFactory):
    status = "BLOCKED"
    email = factory.Sequence(lambda n: f"blocked{n}@example.com")


def build_user(factory_cls: type[UserFactory] = UserFactory, **overrides: Any) -> User:
    """Return a transient :class:`User` built from *factory_cls*."""
    return User(**factory_cls.build(**overrides))

#!/usr/bin/env python
"""Create or promote the first MC Exchange administrator.

Run after ``alembic upgrade head``.  Credentials come from the command line
or, when omitted, from ``FIRST_ADMIN_EMAIL`` / ``FIRST_ADMIN_PASSWORD``::

    python scripts/bootstrap_admin.py --email ops@example.com --password 'S3cure!pass'

An existing account with that email is promoted to an active, verified
ADMIN and its password is left untouched, so re-running is safe.

Exit codes:
    0: admin created or already in place.
    1: no credentials supplied.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from sqlalchemy import select

from mc_exchange.config.settings import get_settings
from mc_exchange.core.database import AsyncSessionLocal
from mc_exchange.core.models.enums import UserRole, UserStatus
from mc_exchange.core.models.users import User
from mc_exchange.core.user_manager import password_helper


def _promote(user: User) -> list[str]:
    changes: list[str] = []
    if user.role != UserRole.ADMIN:
        user.role = UserRole.ADMIN.value
        changes.append("role=ADMIN")
    if user.status != UserStatus.ACTIVE:
        user.status = UserStatus.ACTIVE.value
        changes.append("status=ACTIVE")
    if not user.email_verified:
        user.email_verified = True
        changes.append("email_verified")
    return changes


async def bootstrap(email: str, password: str) -> str:
    """Ensure *email* is an administrator; return a one-line summary."""
    async with AsyncSessionLocal() as session, session.begin():
        existing: Optional[User] = (
            await session.execute(select(User).where(User.email == email))
        ).scalar_one_or_none()

        if existing is None:
            session.add(
                User(
                    email=email,
                    hashed_password=password_helper.hash(password),
                    name="Administrator",
                    role=UserRole.ADMIN.value,
                    status=UserStatus.ACTIVE.value,
                    email_verified=True,
                    verified=True,
                )
            )
            return f"created admin {email}"

        changes = _promote(existing)
        if not changes:
            return f"{email} is already an active admin"
        return f"updated {email}: {', '.join(changes)}"


def main(argv: Optional[list[str]] = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--email", default=settings.first_admin_email)
    parser.add_argument("--password", default=settings.first_admin_password)
    args = parser.parse_args(argv)

    if not args.email or not args.password:
        print(
            "bootstrap_admin: pass --email/--password or set FIRST_ADMIN_EMAIL "
            "and FIRST_ADMIN_PASSWORD",
            file=sys.stderr,
        )
        return 1

    summary = asyncio.run(bootstrap(str(args.email).lower(), args.password))
    print(f"bootstrap_admin: {summary}")
    print(f"bootstrap_admin: review pending listings at {settings.frontend_url}/admin/listings")
    return 0


if __name__ == "__main__":
    sys.exit(main())

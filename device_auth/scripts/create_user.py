"""
Bootstrap script — creates a user that can log in to the session API.

Usage:
    uv run python -m device_auth.scripts.create_user

User registration is owned by the identity service; this exists for
local development and first-run setup only.
"""

import asyncio
import getpass
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from device_auth.core.config import get_settings
from device_auth.core.security import hash_password
from device_auth.models.user import User, UserStatus


async def create_user() -> None:
    engine = create_async_engine(get_settings().DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async with session_factory() as session:
        # ── Collect input ────────────────────────────────────────────
        print("\n🔧  Device Session Auth — Create User\n")
        username = input("  Username:  ").strip()
        email = input("  Email:     ").strip()
        full_name = input("  Full name: ").strip() or None
        password = getpass.getpass("  Password:  ")
        confirm = getpass.getpass("  Confirm:   ")

        if password != confirm:
            print("\n❌  Passwords do not match.")
            await engine.dispose()
            return

        if not username or not email or not password:
            print("\n❌  Username, email and password are required.")
            await engine.dispose()
            return

        # ── Check for existing user ──────────────────────────────────
        existing = (
            await session.execute(
                select(User).where(
                    or_(User.username == username, func.lower(User.email) == email.lower())
                )
            )
        ).scalar_one_or_none()

        if existing:
            print(f"\n❌  User '{username}' / '{email}' already exists.")
            await engine.dispose()
            return

        # ── Create the user ──────────────────────────────────────────
        user = User(
            id=uuid.uuid4(),
            username=username,
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            status=UserStatus.ACTIVE,
        )
        session.add(user)
        await session.commit()

        print(f"\n✅  User created successfully!")
        print(f"    ID:       {user.id}")
        print(f"    Username: {user.username}")
        print(f"\n   You can now log in via POST /api/session/login\n")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_user())

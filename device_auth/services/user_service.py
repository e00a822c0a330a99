"""
User service — the identity-store seam.

The session subsystem only ever needs two things from the user store:
look a user up by the key they typed (username OR email), and check a
password against the stored hash.  Nothing here reads or writes profile
fields beyond that.
"""

import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from device_auth.core.security import DUMMY_PASSWORD_HASH, verify_password
from device_auth.models.user import User, UserStatus


async def find_user_by_credential_key(
    username_or_email: str,
    db: AsyncSession,
) -> User | None:
    key = (username_or_email or "").strip()
    if not key:
        return None
    stmt = select(User).where(
        or_(User.username == key, func.lower(User.email) == key.lower())
    )
    result = await db.execute(stmt)
    return result.scalars().first()


def verify_user_password(user: User | None, candidate: str) -> bool:
    """
    Check ``candidate`` against ``user``'s hash.

    A missing user, a user without a password, or a disabled account
    all return False after doing the same bcrypt work as a real check.
    """
    if user is None or not user.password_hash:
        verify_password(candidate or "", DUMMY_PASSWORD_HASH)
        return False
    matches = verify_password(candidate or "", user.password_hash)
    return matches and user.status == UserStatus.ACTIVE


async def get_user_by_id(
    user_id: uuid.UUID | str,
    db: AsyncSession,
) -> User | None:
    if not isinstance(user_id, uuid.UUID):
        try:
            user_id = uuid.UUID(str(user_id))
        except ValueError:
            return None
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()

"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for `create_all` / Alembic).
"""

from device_auth.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from device_auth.models.session import DeviceSession
from device_auth.models.user import User, UserStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "DeviceSession",
    "User",
    "UserStatus",
]

"""
Device session model — one row per authenticated (user, device) login.

- `id` is the opaque session handle given to clients; it never changes
  while the access / refresh token values rotate in place.
- At most one ACTIVE row per (user_id, device_id): enforced by a
  partial unique index so concurrent double-logins collide at insert.
- `is_active` is one-way.  Once a row is revoked or swept it can never
  be switched back on (see `_is_active_is_terminal`).
- Inactive rows are retained for audit (`revoked_at`, `revoke_reason`)
  until the cleanup task purges them.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from device_auth.models.base import Base, TimestampMixin, as_utc, utcnow


class DeviceSession(Base, TimestampMixin):
    __tablename__ = "device_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # ── Device info (mutable, refreshed on access) ──────────────────
    device_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    device_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Unknown")
    platform: Mapped[str] = mapped_column(String(64), nullable=False, default="Unknown")
    browser: Mapped[str | None] = mapped_column(String(64), nullable=True)
    os: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    # ── Tokens (rotated in place) ────────────────────────────────────
    access_token: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    refresh_token: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    last_refresh_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    # ── Lifecycle ────────────────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)

    __table_args__ = (
        Index("ix_device_sessions_user_device", "user_id", "device_id"),
        Index("ix_device_sessions_user_active", "user_id", "is_active", "expires_at"),
        Index("ix_device_sessions_expires_at", "expires_at"),
        Index(
            "uq_device_sessions_active_user_device",
            "user_id",
            "device_id",
            unique=True,
            postgresql_where=(is_active == True),  # noqa: E712 - SQLAlchemy requires ==
            sqlite_where=(is_active == True),  # noqa: E712
        ),
    )

    @validates("is_active")
    def _is_active_is_terminal(self, key: str, value: bool) -> bool:
        if value and self.__dict__.get("is_active") is False:
            raise ValueError("a deactivated session cannot be reactivated")
        return value

    def is_expired(self, now: datetime | None = None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())

    def is_valid(self, now: datetime | None = None) -> bool:
        """Active and unexpired — the only state that authenticates."""
        return bool(self.is_active) and not self.is_expired(now)

    def touch(self, now: datetime | None = None) -> None:
        self.last_active_at = now or utcnow()

    def deactivate(self, reason: str = "logout", now: datetime | None = None) -> None:
        if not self.is_active:
            return
        self.is_active = False
        self.revoked_at = now or utcnow()
        self.revoke_reason = reason

    def __repr__(self) -> str:
        return (
            f"<DeviceSession id={self.id} user={self.user_id} "
            f"device={self.device_id[:8]} active={self.is_active}>"
        )

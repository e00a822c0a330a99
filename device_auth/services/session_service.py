"""
Session service — the session store.

Handles:
- Inserting session rows (unique-violation → ``ConflictError``)
- Indexed lookups by id / access token / refresh token / (user, device)
- Listing a user's or a device's live sessions
- Deactivating single sessions or filtered sets (idempotent)
- Expiry bookkeeping for the background sweep

Every lookup that feeds authentication filters on
``is_active AND expires_at > now``.  The two "any state" helpers are
for ownership checks and the admin view only — never authenticate off
them.

Every statement goes through ``_execute`` so a stuck database surfaces
as ``StoreTimeoutError`` rather than a hung request.
"""

import asyncio
import logging
import uuid
from datetime import datetime

from sqlalchemy import Select, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from device_auth.core.config import get_settings
from device_auth.core.errors import ConflictError, StoreTimeoutError
from device_auth.core.security import mask
from device_auth.models.base import utcnow
from device_auth.models.session import DeviceSession

logger = logging.getLogger(__name__)


async def _execute(db: AsyncSession, stmt):
    timeout = get_settings().STORE_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(db.execute(stmt), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error("Session store call exceeded %.1fs: %s", timeout, stmt)
        raise StoreTimeoutError(reason="session store timeout") from exc


def _live(stmt: Select, now: datetime | None = None) -> Select:
    """Restrict a select to sessions that may still authenticate."""
    return stmt.where(
        DeviceSession.is_active == True,  # noqa: E712
        DeviceSession.expires_at > (now or utcnow()),
    )


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


# ── Create ───────────────────────────────────────────────────────────


async def create_session(session: DeviceSession, db: AsyncSession) -> DeviceSession:
    """
    Insert ``session`` inside a savepoint.

    A unique violation (duplicate token value, or a second active row
    for the same user + device) rolls back only the savepoint and is
    re-raised as ``ConflictError`` so the caller can re-read.
    """
    timeout = get_settings().STORE_TIMEOUT_SECONDS
    try:
        async with db.begin_nested():
            db.add(session)
            await asyncio.wait_for(db.flush(), timeout=timeout)
    except IntegrityError as exc:
        logger.info(
            "Session insert conflict for user %s device %s",
            session.user_id, mask(session.device_id),
        )
        raise ConflictError(reason=str(exc.orig)) from exc
    except asyncio.TimeoutError as exc:
        raise StoreTimeoutError(reason="session insert timeout") from exc
    return session


# ── Lookups (live only) ──────────────────────────────────────────────


async def get_session_by_id(
    session_id: uuid.UUID | str,
    db: AsyncSession,
) -> DeviceSession | None:
    """Return a live session by its primary key."""
    sid = _as_uuid(session_id)
    if sid is None:
        return None
    stmt = _live(select(DeviceSession).where(DeviceSession.id == sid))
    result = await _execute(db, stmt)
    return result.scalar_one_or_none()


async def get_session_by_access_token(token: str, db: AsyncSession) -> DeviceSession | None:
    stmt = _live(select(DeviceSession).where(DeviceSession.access_token == token))
    result = await _execute(db, stmt)
    return result.scalar_one_or_none()


async def get_session_by_refresh_token(token: str, db: AsyncSession) -> DeviceSession | None:
    stmt = _live(select(DeviceSession).where(DeviceSession.refresh_token == token))
    result = await _execute(db, stmt)
    return result.scalar_one_or_none()


async def get_active_session_for_device(
    user_id: uuid.UUID,
    device_id: str,
    db: AsyncSession,
) -> DeviceSession | None:
    stmt = _live(
        select(DeviceSession).where(
            DeviceSession.user_id == user_id,
            DeviceSession.device_id == device_id,
        )
    )
    result = await _execute(db, stmt)
    return result.scalars().first()


async def find_device_id_by_fingerprint(
    fingerprint: str,
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
) -> str | None:
    """
    Return the device_id of the most recently active live session that
    carries ``fingerprint``.  When ``user_id`` is given only that user's
    sessions are searched, so one account never adopts another's device.
    """
    stmt = _live(
        select(DeviceSession.device_id)
        .where(DeviceSession.device_fingerprint == fingerprint)
        .order_by(DeviceSession.last_active_at.desc())
        .limit(1)
    )
    if user_id is not None:
        stmt = stmt.where(DeviceSession.user_id == user_id)
    result = await _execute(db, stmt)
    return result.scalar_one_or_none()


async def list_active_sessions_for_user(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> list[DeviceSession]:
    """Live sessions for a user, most recently active first."""
    stmt = _live(
        select(DeviceSession)
        .where(DeviceSession.user_id == user_id)
        .order_by(DeviceSession.last_active_at.desc())
    )
    result = await _execute(db, stmt)
    return list(result.scalars().all())


async def list_active_sessions_for_device(
    device_id: str,
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
) -> list[DeviceSession]:
    """Live sessions on a device (optionally one user's), most recent first."""
    stmt = select(DeviceSession).where(DeviceSession.device_id == device_id)
    if user_id is not None:
        stmt = stmt.where(DeviceSession.user_id == user_id)
    stmt = _live(stmt.order_by(DeviceSession.last_active_at.desc()))
    result = await _execute(db, stmt)
    return list(result.scalars().all())


# ── Lookups (any state) ──────────────────────────────────────────────


async def find_session_any_state(
    session_id: uuid.UUID | str,
    db: AsyncSession,
) -> DeviceSession | None:
    """Fetch a row regardless of state — ownership checks and diagnostics."""
    sid = _as_uuid(session_id)
    if sid is None:
        return None
    result = await _execute(db, select(DeviceSession).where(DeviceSession.id == sid))
    return result.scalar_one_or_none()


async def list_all_sessions_for_user(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> list[DeviceSession]:
    """Admin view: every row for a user, including revoked and expired."""
    stmt = (
        select(DeviceSession)
        .where(DeviceSession.user_id == user_id)
        .order_by(DeviceSession.created_at.desc())
    )
    result = await _execute(db, stmt)
    return list(result.scalars().all())


async def user_has_device(user_id: uuid.UUID, device_id: str, db: AsyncSession) -> bool:
    """Has ``user_id`` ever held a session on ``device_id``?"""
    stmt = (
        select(DeviceSession.id)
        .where(DeviceSession.user_id == user_id, DeviceSession.device_id == device_id)
        .limit(1)
    )
    result = await _execute(db, stmt)
    return result.scalar_one_or_none() is not None


# ── Mutations ────────────────────────────────────────────────────────


async def _flush(db: AsyncSession) -> None:
    timeout = get_settings().STORE_TIMEOUT_SECONDS
    try:
        await asyncio.wait_for(db.flush(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise StoreTimeoutError(reason="session store flush timeout") from exc


async def touch_session(session: DeviceSession, db: AsyncSession) -> None:
    """Bump last_active_at on a loaded row."""
    session.touch()
    await _flush(db)


async def deactivate_session(
    session_id: uuid.UUID,
    db: AsyncSession,
    reason: str = "logout",
) -> bool:
    """
    Mark a single session as inactive (logout).

    Idempotent: returns False when the row was already inactive (or
    does not exist), True when this call flipped it.
    """
    count = await deactivate_sessions(db, session_ids=[session_id], reason=reason)
    return count > 0


async def deactivate_sessions(
    db: AsyncSession,
    *,
    user_id: uuid.UUID | None = None,
    device_id: str | None = None,
    session_ids: list[uuid.UUID] | None = None,
    exclude_session_id: uuid.UUID | None = None,
    reason: str = "logout",
) -> int:
    """
    Deactivate every ACTIVE session matching all given filters.

    Returns the number of rows flipped — already-inactive rows are not
    counted, so repeating a call reports 0.  At least one of
    ``user_id`` / ``device_id`` / ``session_ids`` is required.
    """
    if user_id is None and device_id is None and not session_ids:
        raise ValueError("deactivate_sessions needs at least one filter")

    stmt = select(DeviceSession).where(DeviceSession.is_active == True)  # noqa: E712
    if user_id is not None:
        stmt = stmt.where(DeviceSession.user_id == user_id)
    if device_id is not None:
        stmt = stmt.where(DeviceSession.device_id == device_id)
    if session_ids:
        stmt = stmt.where(DeviceSession.id.in_(session_ids))
    if exclude_session_id is not None:
        stmt = stmt.where(DeviceSession.id != exclude_session_id)

    result = await _execute(db, stmt.with_for_update())
    sessions = result.scalars().all()

    now = utcnow()
    for session in sessions:
        session.deactivate(reason, now=now)
    await _flush(db)
    return len(sessions)


async def rename_device(
    device_id: str,
    device_name: str,
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
) -> int:
    """Set the display name on the live session rows of a device."""
    stmt = _live(select(DeviceSession).where(DeviceSession.device_id == device_id))
    if user_id is not None:
        stmt = stmt.where(DeviceSession.user_id == user_id)
    result = await _execute(db, stmt)
    sessions = result.scalars().all()
    for session in sessions:
        session.device_name = device_name
    await _flush(db)
    return len(sessions)


async def expire_stale_sessions(
    db: AsyncSession,
    *,
    user_id: uuid.UUID | None = None,
    device_id: str | None = None,
) -> int:
    """
    Flip active-but-past-expiry rows to inactive (reason ``expired``).

    Scoped to one (user, device) during login so a dead row cannot hold
    the active-per-device unique slot; unscoped from the sweep.
    """
    now = utcnow()
    stmt = select(DeviceSession).where(
        DeviceSession.is_active == True,  # noqa: E712
        DeviceSession.expires_at <= now,
    )
    if user_id is not None:
        stmt = stmt.where(DeviceSession.user_id == user_id)
    if device_id is not None:
        stmt = stmt.where(DeviceSession.device_id == device_id)

    result = await _execute(db, stmt)
    sessions = result.scalars().all()
    for session in sessions:
        session.deactivate("expired", now=now)
    await _flush(db)
    return len(sessions)


async def purge_inactive_sessions(older_than: datetime, db: AsyncSession) -> int:
    """Physically delete inactive rows revoked before ``older_than``."""
    stmt = (
        delete(DeviceSession)
        .where(
            DeviceSession.is_active == False,  # noqa: E712
            DeviceSession.revoked_at < older_than,
        )
        .execution_options(synchronize_session=False)
    )
    result = await _execute(db, stmt)
    await _flush(db)
    return result.rowcount or 0

"""
Authentication service — the session lifecycle.

Handles:
- Login with create-or-reuse of the (user, device) session row
- Access-token get-or-refresh on an existing session
- Refresh-token exchange (both tokens rotated in place on the row)
- Revocation: single / others / all / device-scoped
- Read models for "your active devices" and per-device session lists

Session states are ACTIVE → EXPIRED (time) or ACTIVE → REVOKED
(explicit).  Both end states are terminal and fail authentication;
they only differ in ``revoke_reason`` for audit.

Concurrency rules:
- Two logins racing for the same (user, device) collide on the partial
  unique index; the loser re-reads and reuses the winner's row.
- Concurrent refreshes of one session are last-write-wins; every token
  either request minted is valid for the same triple.

Revocation calls are idempotent: revoking a dead session, or revoking
"all" twice, reports 0 and does not raise.

All business logic lives here — controllers call service methods
and return the result.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from device_auth.core.config import get_settings
from device_auth.core.errors import (
    ConflictError,
    ExpiredTokenError,
    InvalidCredentialsError,
    MalformedTokenError,
    SessionExpiredError,
    SessionNotFoundError,
    UnauthorizedDeviceActionError,
    UserNotFoundError,
)
from device_auth.core.security import mask
from device_auth.core.tokens import TokenClass, get_token_issuer
from device_auth.models.base import as_utc, utcnow
from device_auth.models.session import DeviceSession
from device_auth.models.user import User, UserStatus
from device_auth.services import session_service, user_service
from device_auth.services.device_service import (
    DeviceInfo,
    FingerprintSignals,
    generate_fingerprint,
)

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    session: DeviceSession
    user: User
    created: bool


@dataclass(frozen=True)
class SessionSummary:
    """Display-safe view of a session.  Never carries token values."""

    session_id: uuid.UUID
    user_id: uuid.UUID
    device_id: str
    device_name: str | None
    device_type: str
    platform: str
    browser: str | None
    os: str | None
    ip_address: str | None
    location: str | None
    last_active_at: datetime
    created_at: datetime
    expires_at: datetime
    is_active: bool = True
    is_current: bool = False

    @classmethod
    def from_session(
        cls,
        session: DeviceSession,
        current_session_id: uuid.UUID | None = None,
    ) -> "SessionSummary":
        return cls(
            session_id=session.id,
            user_id=session.user_id,
            device_id=session.device_id,
            device_name=session.device_name,
            device_type=session.device_type,
            platform=session.platform,
            browser=session.browser,
            os=session.os,
            ip_address=session.ip_address,
            location=session.location,
            last_active_at=as_utc(session.last_active_at),
            created_at=as_utc(session.created_at),
            expires_at=as_utc(session.expires_at),
            is_active=session.is_active,
            is_current=current_session_id is not None and session.id == current_session_id,
        )


def _session_ttl() -> timedelta:
    return timedelta(days=get_settings().SESSION_EXPIRE_DAYS)


async def _require_active_owner(session: DeviceSession, db: AsyncSession) -> User:
    """The session's owner; a missing or disabled owner fails like a dead session."""
    user = await user_service.get_user_by_id(session.user_id, db)
    if user is None or user.status != UserStatus.ACTIVE:
        logger.info("Session %s belongs to a missing or disabled user", mask(str(session.id)))
        raise UserNotFoundError()
    return user


async def _diagnose_missing(session_id: uuid.UUID | str, db: AsyncSession) -> str:
    """Internal-only reason a session id failed to resolve (for logs)."""
    row = await session_service.find_session_any_state(session_id, db)
    if row is None:
        return "missing"
    if not row.is_active:
        return row.revoke_reason or "revoked"
    return "expired"


# ── Device resolution ────────────────────────────────────────────────


async def resolve_device(
    device: DeviceInfo,
    db: AsyncSession,
    *,
    fingerprint_signals: FingerprintSignals | None = None,
    user_id: uuid.UUID | None = None,
) -> DeviceInfo:
    """
    Attach a fingerprint to ``device`` and, if a live session already
    carries that fingerprint, adopt its device_id.
    """
    if fingerprint_signals is None:
        return device

    fingerprint = generate_fingerprint(fingerprint_signals)
    device.fingerprint = fingerprint
    if device.reused:
        # Client already presented a known device id.
        return device

    existing = await session_service.find_device_id_by_fingerprint(
        fingerprint, db, user_id=user_id,
    )
    if existing:
        device.device_id = existing
        device.reused = True
        logger.info("Fingerprint %s matched existing device %s", mask(fingerprint), mask(existing))
    return device


# ── Login ────────────────────────────────────────────────────────────


def _reuse(session: DeviceSession, device: DeviceInfo, device_name: str | None) -> None:
    now = utcnow()
    session.touch(now)
    session.expires_at = now + _session_ttl()
    if device_name:
        session.device_name = device_name
    if device.fingerprint and not session.device_fingerprint:
        session.device_fingerprint = device.fingerprint
    session.ip_address = device.ip_address
    session.user_agent = device.user_agent


def _new_session(user: User, device: DeviceInfo) -> DeviceSession:
    now = utcnow()
    session_id = uuid.uuid4()
    tokens = get_token_issuer().mint(str(user.id), str(session_id), device.device_id, now=now)
    return DeviceSession(
        id=session_id,
        user_id=user.id,
        device_id=device.device_id,
        device_fingerprint=device.fingerprint,
        device_name=device.device_name,
        device_type=device.device_type,
        platform=device.platform,
        browser=device.browser,
        os=device.os,
        ip_address=device.ip_address,
        user_agent=device.user_agent,
        location=device.location,
        last_active_at=now,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        last_refresh_at=now,
        is_active=True,
        expires_at=now + _session_ttl(),
    )


async def login(
    username: str,
    password: str,
    device: DeviceInfo,
    db: AsyncSession,
    *,
    device_name: str | None = None,
    fingerprint_signals: FingerprintSignals | None = None,
) -> LoginResult:
    """
    Verify credentials, resolve the device, and create or reuse the
    session row for (user, device).
    """
    user = await user_service.find_user_by_credential_key(username, db)
    if not user_service.verify_user_password(user, password):
        logger.info(
            "Login rejected for key %s (%s)",
            mask(username, 3), "unknown user" if user is None else "bad password or disabled",
        )
        raise InvalidCredentialsError()

    device = await resolve_device(
        device, db, fingerprint_signals=fingerprint_signals, user_id=user.id,
    )

    retries = max(1, get_settings().LOGIN_CONFLICT_RETRIES)
    for attempt in range(retries):
        existing = await session_service.get_active_session_for_device(
            user.id, device.device_id, db,
        )
        if existing is not None:
            _reuse(existing, device, device_name)
            await db.flush()
            logger.info(
                "Reusing session %s for user %s on device %s",
                mask(str(existing.id)), user.id, mask(device.device_id),
            )
            return LoginResult(session=existing, user=user, created=False)

        # A dead row still flagged active would hold the unique slot.
        await session_service.expire_stale_sessions(
            db, user_id=user.id, device_id=device.device_id,
        )
        try:
            session = await session_service.create_session(_new_session(user, device), db)
        except ConflictError:
            logger.info(
                "Concurrent login won for user %s on device %s (attempt %d)",
                user.id, mask(device.device_id), attempt + 1,
            )
            continue

        logger.info(
            "Created session %s for user %s on device %s",
            mask(str(session.id)), user.id, mask(device.device_id),
        )
        return LoginResult(session=session, user=user, created=True)

    raise ConflictError(reason=f"login for user {user.id} lost {retries} insert races")


# ── Tokens ───────────────────────────────────────────────────────────


def _access_ttl_for(session: DeviceSession, now: datetime) -> timedelta:
    """Access TTL, capped so a token never outlives its session."""
    ttl = timedelta(minutes=get_settings().ACCESS_TOKEN_EXPIRE_MINUTES)
    remaining = as_utc(session.expires_at) - now
    return min(ttl, remaining)


async def get_or_refresh_token(
    session_id: uuid.UUID | str,
    db: AsyncSession,
) -> tuple[str, DeviceSession]:
    """
    Return the session's current access token, minting and storing a
    new one (same session_id) if the stored token no longer validates.
    """
    session = await session_service.get_session_by_id(session_id, db)
    if session is None:
        reason = await _diagnose_missing(session_id, db)
        logger.info("Token request for dead session %s (%s)", mask(str(session_id)), reason)
        raise SessionExpiredError(reason=reason)
    await _require_active_owner(session, db)

    issuer = get_token_issuer()
    now = utcnow()
    try:
        issuer.validate(session.access_token, TokenClass.ACCESS)
    except (ExpiredTokenError, MalformedTokenError) as exc:
        if isinstance(exc, MalformedTokenError):
            logger.warning(
                "Stored access token for session %s failed validation (%s); re-minting",
                mask(str(session.id)), exc.reason,
            )
        access_token, _ = issuer.mint_access(
            str(session.user_id), str(session.id), session.device_id,
            now=now, ttl=_access_ttl_for(session, now),
        )
        session.access_token = access_token
        session.last_refresh_at = now

    await session_service.touch_session(session, db)
    return session.access_token, session


async def refresh_tokens(refresh_token: str, db: AsyncSession) -> DeviceSession:
    """
    Exchange the session's CURRENT refresh token for a new pair.

    A validly-signed refresh token that no longer matches the row was
    already rotated away — treated as a dead credential.
    """
    issuer = get_token_issuer()
    payload = issuer.validate(refresh_token, TokenClass.REFRESH)

    session = await session_service.get_session_by_refresh_token(refresh_token, db)
    if session is None:
        live = await session_service.get_session_by_id(payload.session_id, db)
        if live is not None:
            logger.warning(
                "Stale refresh token presented for session %s — possible reuse",
                mask(payload.session_id),
            )
            raise SessionNotFoundError(reason="refresh token rotated")
        raise SessionNotFoundError(reason=await _diagnose_missing(payload.session_id, db))

    if str(session.user_id) != payload.user_id or session.device_id != payload.device_id:
        raise MalformedTokenError(reason="refresh token does not match its session")
    await _require_active_owner(session, db)

    now = utcnow()
    pair = issuer.mint(str(session.user_id), str(session.id), session.device_id, now=now)
    session.access_token = pair.access_token
    session.refresh_token = pair.refresh_token
    session.last_refresh_at = now
    session.touch(now)
    await db.flush()
    return session


# ── Revocation ───────────────────────────────────────────────────────


async def revoke_session(session_id: uuid.UUID, db: AsyncSession, reason: str = "logout") -> bool:
    revoked = await session_service.deactivate_session(session_id, db, reason=reason)
    if revoked:
        logger.info("Revoked session %s (%s)", mask(str(session_id)), reason)
    return revoked


async def revoke_others(
    current_session_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession,
) -> int:
    count = await session_service.deactivate_sessions(
        db, user_id=user_id, exclude_session_id=current_session_id, reason="logout_others",
    )
    logger.info("User %s logged out of %d other sessions", user_id, count)
    return count


async def revoke_all(user_id: uuid.UUID, db: AsyncSession) -> int:
    count = await session_service.deactivate_sessions(db, user_id=user_id, reason="logout_all")
    logger.info("User %s logged out of all %d sessions", user_id, count)
    return count


async def revoke_device(
    device_id: str,
    db: AsyncSession,
    *,
    exclude_session_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
) -> int:
    """
    Deactivate every active session on ``device_id``, optionally sparing
    one.  ``user_id=None`` is the device-wide (all accounts) form.
    """
    count = await session_service.deactivate_sessions(
        db,
        device_id=device_id,
        user_id=user_id,
        exclude_session_id=exclude_session_id,
        reason="logout_device",
    )
    logger.info("Logged out %d sessions for device %s", count, mask(device_id))
    return count


async def list_sessions(
    user_id: uuid.UUID,
    db: AsyncSession,
    current_session_id: uuid.UUID | None = None,
) -> list[SessionSummary]:
    sessions = await session_service.list_active_sessions_for_user(user_id, db)
    return [SessionSummary.from_session(s, current_session_id) for s in sessions]


# ── Session-id driven operations (routing layer entry points) ───────


async def _owner_session(session_id: uuid.UUID | str, db: AsyncSession) -> DeviceSession | None:
    """
    Live session for ``session_id``; None if it exists but is dead.
    Raises ``SessionNotFoundError`` if it never existed.
    """
    current = await session_service.get_session_by_id(session_id, db)
    if current is not None:
        return current
    reason = await _diagnose_missing(session_id, db)
    if reason == "missing":
        raise SessionNotFoundError(reason=reason)
    return None


async def logout_session(
    session_id: uuid.UUID | str,
    db: AsyncSession,
    target_session_id: uuid.UUID | str | None = None,
) -> bool:
    """
    Log out ``target_session_id`` (default: the presenting session).

    Logging out one's own already-dead session succeeds as a no-op.
    Targeting another session requires a live presenting session and
    ownership of the target.
    """
    if target_session_id is None or str(target_session_id) == str(session_id):
        row = await session_service.find_session_any_state(session_id, db)
        if row is None:
            raise SessionNotFoundError(reason="missing")
        return await revoke_session(row.id, db)

    current = await session_service.get_session_by_id(session_id, db)
    if current is None:
        raise SessionNotFoundError(reason=await _diagnose_missing(session_id, db))

    target = await session_service.find_session_any_state(target_session_id, db)
    if target is None or target.user_id != current.user_id:
        logger.warning(
            "User %s tried to log out session %s they do not own",
            current.user_id, mask(str(target_session_id)),
        )
        raise UnauthorizedDeviceActionError()
    return await revoke_session(target.id, db)


async def logout_all_sessions(session_id: uuid.UUID | str, db: AsyncSession) -> int:
    current = await _owner_session(session_id, db)
    if current is None:
        return 0
    return await revoke_all(current.user_id, db)


async def logout_other_sessions(session_id: uuid.UUID | str, db: AsyncSession) -> int:
    current = await _owner_session(session_id, db)
    if current is None:
        return 0
    return await revoke_others(current.id, current.user_id, db)


async def _check_device_access(current: DeviceSession, device_id: str, db: AsyncSession) -> None:
    """Refuse a device the presenting user has never had a session on."""
    if device_id == current.device_id:
        return
    if not await session_service.user_has_device(current.user_id, device_id, db):
        logger.warning("User %s has no sessions on device %s", current.user_id, mask(device_id))
        raise UnauthorizedDeviceActionError()


async def logout_device_sessions(
    session_id: uuid.UUID | str,
    db: AsyncSession,
    *,
    device_id: str | None = None,
    exclude_current: bool = False,
) -> tuple[str | None, int]:
    """
    Log the presenting user out of every session on a device.  Other
    accounts on the same device are never touched.
    """
    current = await _owner_session(session_id, db)
    if current is None:
        return device_id, 0

    target_device = device_id or current.device_id
    await _check_device_access(current, target_device, db)
    count = await revoke_device(
        target_device,
        db,
        exclude_session_id=current.id if exclude_current else None,
        user_id=current.user_id,
    )
    return target_device, count


async def list_device_sessions(
    current: DeviceSession,
    db: AsyncSession,
    device_id: str | None = None,
) -> tuple[str, list[SessionSummary]]:
    target_device = device_id or current.device_id
    await _check_device_access(current, target_device, db)
    sessions = await session_service.list_active_sessions_for_device(
        target_device, db, user_id=current.user_id,
    )
    return target_device, [SessionSummary.from_session(s, current.id) for s in sessions]


async def update_device_name(current: DeviceSession, device_name: str, db: AsyncSession) -> int:
    """Rename the presenting user's live sessions on the current device."""
    return await session_service.rename_device(
        current.device_id, device_name, db, user_id=current.user_id,
    )


# ── Session → identity ───────────────────────────────────────────────


async def validate_session(
    session_id: uuid.UUID | str,
    db: AsyncSession,
) -> tuple[DeviceSession, User]:
    """
    Resolve a session id to its live row and owning user.

    Raises ``SessionNotFoundError`` for a dead or unknown session and
    ``UserNotFoundError`` when the owner is gone or disabled.
    """
    session = await session_service.get_session_by_id(session_id, db)
    if session is None:
        reason = await _diagnose_missing(session_id, db)
        logger.info("Denied session %s (%s)", mask(str(session_id)), reason)
        raise SessionNotFoundError(reason=reason)

    return session, await _require_active_owner(session, db)


async def get_user_by_session(session_id: uuid.UUID | str, db: AsyncSession) -> User:
    _, user = await validate_session(session_id, db)
    return user

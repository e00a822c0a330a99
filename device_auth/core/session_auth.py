"""
Per-request authentication dependencies.

Two ways to present a credential:

- **Session id**: ``X-Session-Id`` header, else the ``{session_id}``
  path parameter, else a ``session_id`` query parameter.  The header
  always wins, and the source is recorded on the context.
- **Bearer access token**: ``Authorization: Bearer <jwt>``.  The token
  must validate as an ACCESS token AND its session row must still be
  live with the same user and device.

Every resolution is bounded by ``AUTH_TIMEOUT_SECONDS``; a timeout is
a denial (``StoreTimeoutError``), never a pass.

Once resolved, ``last_active_at`` is bumped best-effort inside a
savepoint, under its own ``STORE_TIMEOUT_SECONDS`` bound and outside
the auth bound.  A failed or slow bump is logged and the request
proceeds.
"""

import asyncio
import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from device_auth.core.config import get_settings
from device_auth.core.database import get_db
from device_auth.core.errors import (
    MalformedTokenError,
    MissingCredentialError,
    SessionNotFoundError,
    StoreTimeoutError,
)
from device_auth.core.security import mask
from device_auth.core.tokens import TokenClass, TokenPayload, get_token_issuer
from device_auth.models.base import utcnow
from device_auth.models.session import DeviceSession
from device_auth.models.user import User
from device_auth.services import auth_service

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"


@dataclass
class AuthContext:
    session: DeviceSession
    user: User
    source: str
    token: TokenPayload | None = None


def extract_session_id(request: Request) -> tuple[str | None, str | None]:
    """Return ``(session_id, source)``; header beats path beats query."""
    header = request.headers.get(SESSION_HEADER)
    if header and header.strip():
        return header.strip(), "header"
    path_value = request.path_params.get("session_id")
    if path_value:
        return str(path_value), "path"
    query_value = request.query_params.get("session_id")
    if query_value:
        return query_value, "query"
    return None, None


def extract_bearer_token(request: Request) -> str:
    authorization = request.headers.get("Authorization")
    if not authorization:
        raise MissingCredentialError(message="Access token is required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise MalformedTokenError(reason="Authorization header is not a bearer token")
    return token.strip()


async def _bump_last_active(session: DeviceSession, db: AsyncSession) -> None:
    now = utcnow()
    # Column-level UPDATE so a rolled-back savepoint leaves the loaded row intact.
    stmt = (
        update(DeviceSession)
        .where(DeviceSession.id == session.id)
        .values(last_active_at=now)
        .execution_options(synchronize_session=False)
    )
    async with db.begin_nested():
        await db.execute(stmt)
    set_committed_value(session, "last_active_at", now)


async def _bump_best_effort(session: DeviceSession, db: AsyncSession) -> None:
    timeout = get_settings().STORE_TIMEOUT_SECONDS
    try:
        await asyncio.wait_for(_bump_last_active(session, db), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Updating last_active_at for session %s exceeded %.1fs, skipping",
            mask(str(session.id)), timeout,
        )
    except SQLAlchemyError:
        logger.warning(
            "Could not update last_active_at for session %s", mask(str(session.id)), exc_info=True,
        )


async def _bounded(coro):
    timeout = get_settings().AUTH_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error("Authentication exceeded %.1fs, denying", timeout)
        raise StoreTimeoutError(reason="authentication timeout") from exc


async def authenticate_session_id(
    session_id: str | None,
    db: AsyncSession,
    *,
    source: str = "path",
) -> AuthContext:
    if not session_id:
        raise MissingCredentialError(message="Session ID is required")

    async def _resolve() -> AuthContext:
        session, user = await auth_service.validate_session(session_id, db)
        return AuthContext(session=session, user=user, source=source)

    ctx = await _bounded(_resolve())
    await _bump_best_effort(ctx.session, db)
    return ctx


async def authenticate_access_token(token: str, db: AsyncSession) -> AuthContext:
    payload = get_token_issuer().validate(token, TokenClass.ACCESS)

    async def _resolve() -> AuthContext:
        session, user = await auth_service.validate_session(payload.session_id, db)
        if str(session.user_id) != payload.user_id or session.device_id != payload.device_id:
            logger.warning("Token/session mismatch for session %s", mask(payload.session_id))
            raise SessionNotFoundError(reason="token does not match its session")
        return AuthContext(session=session, user=user, source="bearer", token=payload)

    ctx = await _bounded(_resolve())
    await _bump_best_effort(ctx.session, db)
    return ctx


# ── FastAPI dependencies ─────────────────────────────────────────────


async def presented_session_id(request: Request) -> str:
    """The session id the caller presented, without validating it."""
    session_id, _ = extract_session_id(request)
    if not session_id:
        raise MissingCredentialError(message="Session ID is required")
    return session_id


async def require_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    session_id, source = extract_session_id(request)
    return await authenticate_session_id(session_id, db, source=source or "path")


async def require_access_token(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    return await authenticate_access_token(extract_bearer_token(request), db)

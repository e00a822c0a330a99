"""
Auth controller — bearer-token routes.

Every route except ``/refresh`` requires ``Authorization: Bearer
<access token>``; the token is checked against the live session row
on every request (``require_access_token``).  Both paths share the
same session store, so revoking a session here kills its session id
too, and vice versa.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from device_auth.core.database import get_db
from device_auth.core.errors import UnauthorizedDeviceActionError
from device_auth.core.session_auth import AuthContext, require_access_token
from device_auth.models.base import as_utc
from device_auth.schemas import (
    MessageResponse,
    RefreshTokenRequest,
    RevokedResponse,
    SessionListResponse,
    SessionOut,
    TokenPairOut,
    UserBrief,
    UserOut,
    ValidateResponse,
)
from device_auth.services import auth_service, session_service

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/refresh", response_model=TokenPairOut)
async def refresh_token(
    body: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
):
    """Exchange the current refresh token for a new access + refresh pair."""
    session = await auth_service.refresh_tokens(body.refresh_token, db)
    return TokenPairOut(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        session_id=session.id,
        expires_at=as_utc(session.expires_at),
    )


@router.get("/validate", response_model=ValidateResponse)
async def validate(ctx: AuthContext = Depends(require_access_token)):
    return ValidateResponse(
        session_id=ctx.session.id,
        expires_at=as_utc(ctx.session.expires_at),
        last_active_at=as_utc(ctx.session.last_active_at),
        source=ctx.source,
        user=UserBrief.model_validate(ctx.user),
    )


@router.get("/me", response_model=UserOut)
async def me(ctx: AuthContext = Depends(require_access_token)):
    return UserOut(
        id=ctx.user.id,
        username=ctx.user.username,
        email=ctx.user.email,
        full_name=ctx.user.full_name,
        avatar=ctx.user.avatar,
        status=ctx.user.status.value,
        created_at=as_utc(ctx.user.created_at),
    )


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    ctx: AuthContext = Depends(require_access_token),
    db: AsyncSession = Depends(get_db),
):
    summaries = await auth_service.list_sessions(ctx.user.id, db, ctx.session.id)
    sessions = [SessionOut.model_validate(s) for s in summaries]
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.delete("/sessions/{session_id}", response_model=RevokedResponse)
async def revoke_session(
    session_id: uuid.UUID,
    ctx: AuthContext = Depends(require_access_token),
    db: AsyncSession = Depends(get_db),
):
    """Revoke one of the caller's own sessions (idempotent)."""
    target = await session_service.find_session_any_state(session_id, db)
    if target is None or target.user_id != ctx.user.id:
        raise UnauthorizedDeviceActionError()
    revoked = await auth_service.revoke_session(target.id, db)
    return RevokedResponse(detail="Session revoked", sessions_terminated=int(revoked))


@router.post("/logout-others", response_model=RevokedResponse)
async def logout_others(
    ctx: AuthContext = Depends(require_access_token),
    db: AsyncSession = Depends(get_db),
):
    count = await auth_service.revoke_others(ctx.session.id, ctx.user.id, db)
    return RevokedResponse(detail="Logged out from other sessions", sessions_terminated=count)


@router.post("/logout-all", response_model=RevokedResponse)
async def logout_all(
    ctx: AuthContext = Depends(require_access_token),
    db: AsyncSession = Depends(get_db),
):
    count = await auth_service.revoke_all(ctx.user.id, db)
    return RevokedResponse(detail="Logged out from all sessions", sessions_terminated=count)


@router.delete("/logout", response_model=MessageResponse)
async def logout(
    ctx: AuthContext = Depends(require_access_token),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate the current session (server-side logout)."""
    await auth_service.revoke_session(ctx.session.id, db)
    return MessageResponse(detail="Logged out successfully")

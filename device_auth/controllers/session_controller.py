"""
Session controller — session-id authenticated routes.

Login is PUBLIC.  Read routes use ``Depends(require_session)``, which
accepts the session id from the ``X-Session-Id`` header first, then
the ``{session_id}`` path segment.  Revocation routes only need the
presented id: logging out an already-dead session is a no-op success.

Controllers are THIN — they delegate to services and return schemas.
"""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from device_auth.core.database import get_db
from device_auth.core.errors import SessionAuthError
from device_auth.core.session_auth import (
    AuthContext,
    authenticate_session_id,
    extract_session_id,
    presented_session_id,
    require_session,
)
from device_auth.models.base import as_utc
from device_auth.schemas import (
    DeviceLogoutRequest,
    DeviceLogoutResponse,
    DeviceNameRequest,
    DeviceNameResponse,
    DeviceSessionListResponse,
    LoginRequest,
    LoginResponse,
    LogoutSessionRequest,
    RevokedResponse,
    SessionListResponse,
    SessionOut,
    TokenOut,
    UserBrief,
    UserOut,
    ValidateResponse,
)
from device_auth.services import auth_service
from device_auth.services.device_service import extract_device_info

router = APIRouter(prefix="/api/session", tags=["Session"])


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


# ── Login ────────────────────────────────────────────────────────────
@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate with username/email + password; create or reuse the device session."""
    ip = _client_ip(request)
    device = extract_device_info(
        request.headers, ip, device_name=body.device_name, device_id=body.device_id,
    )
    device.reused = body.device_id is not None
    signals = body.device_fingerprint.to_signals(ip) if body.device_fingerprint else None

    result = await auth_service.login(
        body.username,
        body.password,
        device,
        db,
        device_name=body.device_name,
        fingerprint_signals=signals,
    )
    return LoginResponse(
        session_id=result.session.id,
        device_id=result.session.device_id,
        expires_at=as_utc(result.session.expires_at),
        user=UserBrief.model_validate(result.user),
    )


# ── Identity & tokens ────────────────────────────────────────────────
@router.get("/user/{session_id}", response_model=UserOut)
async def get_user(ctx: AuthContext = Depends(require_session)):
    """Profile of the user owning the session (no credentials)."""
    return UserOut(
        id=ctx.user.id,
        username=ctx.user.username,
        email=ctx.user.email,
        full_name=ctx.user.full_name,
        avatar=ctx.user.avatar,
        status=ctx.user.status.value,
        created_at=as_utc(ctx.user.created_at),
    )


@router.get("/token/{session_id}", response_model=TokenOut)
async def get_token(
    session_id: str = Depends(presented_session_id),
    db: AsyncSession = Depends(get_db),
):
    """Current access token for the session, re-minted if it has expired."""
    access_token, session = await auth_service.get_or_refresh_token(session_id, db)
    return TokenOut(
        access_token=access_token,
        session_id=session.id,
        expires_at=as_utc(session.expires_at),
    )


# ── Sessions ─────────────────────────────────────────────────────────
@router.get("/sessions/{session_id}", response_model=SessionListResponse)
async def list_sessions(
    ctx: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db),
):
    """Every live session of the user — the 'your active devices' view."""
    summaries = await auth_service.list_sessions(ctx.user.id, db, ctx.session.id)
    sessions = [SessionOut.model_validate(s) for s in summaries]
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.post("/logout/{session_id}", response_model=RevokedResponse)
async def logout(
    body: LogoutSessionRequest | None = None,
    session_id: str = Depends(presented_session_id),
    db: AsyncSession = Depends(get_db),
):
    """Log out the presented session, or another session the user owns."""
    target = body.target_session_id if body else None
    revoked = await auth_service.logout_session(session_id, db, target_session_id=target)
    return RevokedResponse(detail="Logged out successfully", sessions_terminated=int(revoked))


@router.post("/logout-all/{session_id}", response_model=RevokedResponse)
async def logout_all(
    session_id: str = Depends(presented_session_id),
    db: AsyncSession = Depends(get_db),
):
    count = await auth_service.logout_all_sessions(session_id, db)
    return RevokedResponse(detail="Logged out from all sessions", sessions_terminated=count)


@router.post("/logout-others/{session_id}", response_model=RevokedResponse)
async def logout_others(
    session_id: str = Depends(presented_session_id),
    db: AsyncSession = Depends(get_db),
):
    count = await auth_service.logout_other_sessions(session_id, db)
    return RevokedResponse(detail="Logged out from other sessions", sessions_terminated=count)


# ── Device ───────────────────────────────────────────────────────────
@router.api_route(
    "/device/sessions/{session_id}",
    methods=["GET", "POST"],
    response_model=DeviceSessionListResponse,
)
async def list_device_sessions(
    ctx: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db),
    device_id: str | None = Query(None, max_length=128),
):
    """The caller's own live sessions on a device (default: the current one)."""
    target_device, summaries = await auth_service.list_device_sessions(ctx.session, db, device_id)
    sessions = [SessionOut.model_validate(s) for s in summaries]
    return DeviceSessionListResponse(device_id=target_device, sessions=sessions, total=len(sessions))


@router.post("/device/logout-all/{session_id}", response_model=DeviceLogoutResponse)
async def logout_device(
    body: DeviceLogoutRequest | None = None,
    session_id: str = Depends(presented_session_id),
    db: AsyncSession = Depends(get_db),
):
    body = body or DeviceLogoutRequest()
    device_id, count = await auth_service.logout_device_sessions(
        session_id, db, device_id=body.device_id, exclude_current=body.exclude_current,
    )
    return DeviceLogoutResponse(
        detail="Logged out from device",
        device_id=device_id,
        sessions_terminated=count,
    )


@router.put("/device/name/{session_id}", response_model=DeviceNameResponse)
async def update_device_name(
    body: DeviceNameRequest,
    ctx: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db),
):
    count = await auth_service.update_device_name(ctx.session, body.device_name, db)
    return DeviceNameResponse(
        device_id=ctx.session.device_id,
        device_name=body.device_name,
        sessions_updated=count,
    )


# ── Validation ───────────────────────────────────────────────────────
async def _validate(request: Request, db: AsyncSession):
    session_id, source = extract_session_id(request)
    try:
        ctx = await authenticate_session_id(session_id, db, source=source or "path")
    except SessionAuthError as exc:
        if exc.status_code != 401:
            raise
        return JSONResponse(
            status_code=401,
            content={"valid": False, "detail": exc.message, "code": exc.code},
        )
    return ValidateResponse(
        session_id=ctx.session.id,
        expires_at=as_utc(ctx.session.expires_at),
        last_active_at=as_utc(ctx.session.last_active_at),
        source=ctx.source,
        user=UserBrief.model_validate(ctx.user),
    )


@router.get("/validate", response_model=ValidateResponse)
async def validate_header(request: Request, db: AsyncSession = Depends(get_db)):
    """Validate the session named by the ``X-Session-Id`` header."""
    return await _validate(request, db)


@router.get("/validate/{session_id}", response_model=ValidateResponse)
async def validate(request: Request, db: AsyncSession = Depends(get_db)):
    return await _validate(request, db)

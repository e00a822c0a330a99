"""
Pydantic schemas for request / response serialization.

Kept in a single file for now — split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.

No response schema here carries a token except the explicit token
responses (``TokenOut`` / ``TokenPairOut``).
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from device_auth.services.device_service import FingerprintSignals, ScreenInfo


# ── Login ────────────────────────────────────────────────────────────
class ScreenIn(BaseModel):
    width: int = Field(ge=0)
    height: int = Field(ge=0)
    color_depth: int = Field(ge=0)


class DeviceFingerprintIn(BaseModel):
    user_agent: str
    platform: str
    language: str | None = None
    timezone: str | None = None
    screen: ScreenIn | None = None

    def to_signals(self, ip_address: str | None = None) -> FingerprintSignals:
        screen = None
        if self.screen is not None:
            screen = ScreenInfo(self.screen.width, self.screen.height, self.screen.color_depth)
        return FingerprintSignals(
            user_agent=self.user_agent,
            platform=self.platform,
            language=self.language,
            timezone=self.timezone,
            screen=screen,
            ip_address=ip_address,
        )


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, description="Username or email")
    password: str = Field(min_length=1)
    device_name: str | None = Field(default=None, max_length=255)
    device_fingerprint: DeviceFingerprintIn | None = None
    # Device id the client stored from an earlier login, if any.
    device_id: str | None = Field(default=None, max_length=128)


class UserBrief(BaseModel):
    id: uuid.UUID
    username: str
    avatar: str | None = None

    model_config = {"from_attributes": True}


class LoginResponse(BaseModel):
    session_id: uuid.UUID
    device_id: str
    expires_at: datetime
    user: UserBrief


# ── Tokens ───────────────────────────────────────────────────────────
class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    session_id: uuid.UUID
    expires_at: datetime


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class TokenPairOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    session_id: uuid.UUID
    expires_at: datetime


# ── User ─────────────────────────────────────────────────────────────
class UserOut(BaseModel):
    id: uuid.UUID
    username: str
    email: str
    full_name: str | None = None
    avatar: str | None = None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Sessions ─────────────────────────────────────────────────────────
class SessionOut(BaseModel):
    session_id: uuid.UUID
    device_id: str
    device_name: str | None = None
    device_type: str
    platform: str
    browser: str | None = None
    os: str | None = None
    ip_address: str | None = None
    location: str | None = None
    last_active_at: datetime
    created_at: datetime
    expires_at: datetime
    is_active: bool = True
    is_current: bool = False

    model_config = {"from_attributes": True}


class SessionListResponse(BaseModel):
    sessions: list[SessionOut]
    total: int


class DeviceSessionListResponse(BaseModel):
    device_id: str
    sessions: list[SessionOut]
    total: int


class ValidateResponse(BaseModel):
    valid: bool = True
    session_id: uuid.UUID
    expires_at: datetime
    last_active_at: datetime
    source: str
    user: UserBrief


# ── Logout / device management ───────────────────────────────────────
class LogoutSessionRequest(BaseModel):
    target_session_id: uuid.UUID | None = None


class DeviceLogoutRequest(BaseModel):
    device_id: str | None = Field(default=None, max_length=128)
    exclude_current: bool = False


class DeviceNameRequest(BaseModel):
    device_name: str = Field(min_length=1, max_length=255)


class RevokedResponse(BaseModel):
    detail: str
    sessions_terminated: int


class DeviceLogoutResponse(RevokedResponse):
    device_id: str | None = None


class DeviceNameResponse(BaseModel):
    device_id: str
    device_name: str
    sessions_updated: int


# ── Common ───────────────────────────────────────────────────────────
class MessageResponse(BaseModel):
    detail: str

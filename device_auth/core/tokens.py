"""
Token issuer — mints and validates the two token classes.

- Access tokens: short-lived, signed with ``ACCESS_TOKEN_SECRET``.
- Refresh tokens: long-lived, signed with ``REFRESH_TOKEN_SECRET``.

Every token carries the same canonical payload::

    {"user_id", "session_id", "device_id", "typ", "jti", "iat", "exp"}

``user_id`` is the ONLY identity field; nothing downstream reads
``sub`` or ``id``.  ``jti`` makes every minted token unique, which the
unique indexes on ``device_sessions.access_token`` / ``refresh_token``
rely on.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from device_auth.core.config import Settings, get_settings
from device_auth.core.errors import ExpiredTokenError, MalformedTokenError


class TokenClass(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


_REQUIRED_CLAIMS = ("user_id", "session_id", "device_id", "typ", "exp")


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    session_id: str
    device_id: str
    token_class: TokenClass
    expires_at: datetime
    jti: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


class TokenIssuer:
    """Pure mint/validate; no I/O, no state beyond configuration."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=60),
        refresh_ttl: timedelta = timedelta(days=7),
    ):
        self._secrets = {
            TokenClass.ACCESS: access_secret,
            TokenClass.REFRESH: refresh_secret,
        }
        self._ttls = {
            TokenClass.ACCESS: access_ttl,
            TokenClass.REFRESH: refresh_ttl,
        }
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(
            settings.ACCESS_TOKEN_SECRET,
            settings.REFRESH_TOKEN_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )

    # ── Mint ─────────────────────────────────────────────────────────

    def _encode(
        self,
        token_class: TokenClass,
        user_id: str,
        session_id: str,
        device_id: str,
        now: datetime,
        ttl: timedelta | None = None,
    ) -> tuple[str, datetime]:
        expires_at = now + (ttl if ttl is not None else self._ttls[token_class])
        claims: dict[str, Any] = {
            "user_id": str(user_id),
            "session_id": str(session_id),
            "device_id": device_id,
            "typ": token_class.value,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(claims, self._secrets[token_class], algorithm=self.algorithm)
        return token, expires_at

    def mint_access(
        self,
        user_id: str,
        session_id: str,
        device_id: str,
        *,
        now: datetime | None = None,
        ttl: timedelta | None = None,
    ) -> tuple[str, datetime]:
        now = now or datetime.now(timezone.utc)
        return self._encode(TokenClass.ACCESS, user_id, session_id, device_id, now, ttl)

    def mint(
        self,
        user_id: str,
        session_id: str,
        device_id: str,
        *,
        now: datetime | None = None,
    ) -> TokenPair:
        """Mint an access + refresh pair bound to one (user, session, device)."""
        now = now or datetime.now(timezone.utc)
        access, access_exp = self._encode(
            TokenClass.ACCESS, user_id, session_id, device_id, now,
        )
        refresh, refresh_exp = self._encode(
            TokenClass.REFRESH, user_id, session_id, device_id, now,
        )
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            access_expires_at=access_exp,
            refresh_expires_at=refresh_exp,
        )

    # ── Validate ─────────────────────────────────────────────────────

    def validate(self, token: str, expected_class: TokenClass) -> TokenPayload:
        """
        Verify signature, expiry and class of ``token``.

        Raises ``ExpiredTokenError`` only for a correctly-signed token of
        the expected class whose ``exp`` has passed; everything else
        (bad signature, other class's secret, garbage, wrong ``typ``,
        missing claims) is ``MalformedTokenError``.
        """
        if not token or not isinstance(token, str):
            raise MalformedTokenError(reason="empty token")

        secret = self._secrets[expected_class]
        try:
            claims = jwt.decode(token, secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise ExpiredTokenError(reason=f"{expected_class.value} token expired") from exc
        except JWTError as exc:
            raise MalformedTokenError(reason=str(exc)) from exc

        if claims.get("typ") != expected_class.value:
            raise MalformedTokenError(
                reason=f"expected {expected_class.value} token, got {claims.get('typ')!r}",
            )
        missing = [name for name in _REQUIRED_CLAIMS if not claims.get(name)]
        if missing:
            raise MalformedTokenError(reason=f"missing claims: {', '.join(missing)}")

        return TokenPayload(
            user_id=str(claims["user_id"]),
            session_id=str(claims["session_id"]),
            device_id=str(claims["device_id"]),
            token_class=expected_class,
            expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
            jti=str(claims.get("jti", "")),
        )


@lru_cache()
def get_token_issuer() -> TokenIssuer:
    return TokenIssuer.from_settings(get_settings())

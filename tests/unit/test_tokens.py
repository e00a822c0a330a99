"""
Unit tests for the token issuer.

Tests minting, class separation between access and refresh tokens,
expiry detection and rejection of malformed input.
"""

from datetime import timedelta

import pytest
from jose import jwt

from device_auth.core.errors import ExpiredTokenError, MalformedTokenError
from device_auth.core.tokens import TokenClass, TokenIssuer

ACCESS_SECRET = "unit-access-secret"
REFRESH_SECRET = "unit-refresh-secret"


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(ACCESS_SECRET, REFRESH_SECRET)


@pytest.mark.unit
class TestMint:
    """Test token minting."""

    def test_pair_carries_canonical_payload(self, issuer: TokenIssuer):
        pair = issuer.mint("user-1", "session-1", "device-1")

        access = issuer.validate(pair.access_token, TokenClass.ACCESS)
        refresh = issuer.validate(pair.refresh_token, TokenClass.REFRESH)

        for payload in (access, refresh):
            assert payload.user_id == "user-1"
            assert payload.session_id == "session-1"
            assert payload.device_id == "device-1"
        assert access.token_class is TokenClass.ACCESS
        assert refresh.token_class is TokenClass.REFRESH

    def test_default_lifetimes(self, issuer: TokenIssuer):
        pair = issuer.mint("user-1", "session-1", "device-1")
        gap = pair.refresh_expires_at - pair.access_expires_at
        assert gap == timedelta(days=7) - timedelta(minutes=60)

    def test_identity_field_is_user_id(self, issuer: TokenIssuer):
        """Only ``user_id`` carries identity; no ``sub`` or ``id`` claims."""
        pair = issuer.mint("user-1", "session-1", "device-1")
        claims = jwt.get_unverified_claims(pair.access_token)
        assert claims["user_id"] == "user-1"
        assert "sub" not in claims
        assert "id" not in claims

    def test_tokens_minted_together_are_unique(self, issuer: TokenIssuer):
        first = issuer.mint("user-1", "session-1", "device-1")
        second = issuer.mint("user-1", "session-1", "device-1")
        assert first.access_token != second.access_token
        assert first.refresh_token != second.refresh_token

    def test_mint_access_honours_ttl(self, issuer: TokenIssuer):
        token, expires_at = issuer.mint_access(
            "user-1", "session-1", "device-1", ttl=timedelta(minutes=5),
        )
        payload = issuer.validate(token, TokenClass.ACCESS)
        assert payload.expires_at == expires_at.replace(microsecond=0)


@pytest.mark.unit
class TestValidate:
    """Test validation failures."""

    def test_refresh_token_rejected_as_access(self, issuer: TokenIssuer):
        pair = issuer.mint("user-1", "session-1", "device-1")
        with pytest.raises(MalformedTokenError):
            issuer.validate(pair.refresh_token, TokenClass.ACCESS)

    def test_access_token_rejected_as_refresh(self, issuer: TokenIssuer):
        pair = issuer.mint("user-1", "session-1", "device-1")
        with pytest.raises(MalformedTokenError):
            issuer.validate(pair.access_token, TokenClass.REFRESH)

    def test_wrong_typ_with_right_secret(self, issuer: TokenIssuer):
        """A token signed with the access secret but typed refresh is rejected."""
        forged = jwt.encode(
            {"user_id": "u", "session_id": "s", "device_id": "d", "typ": "refresh", "exp": 4102444800},
            ACCESS_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(MalformedTokenError):
            issuer.validate(forged, TokenClass.ACCESS)

    def test_expired_token(self, issuer: TokenIssuer):
        token, _ = issuer.mint_access(
            "user-1", "session-1", "device-1", ttl=timedelta(seconds=-30),
        )
        with pytest.raises(ExpiredTokenError) as exc_info:
            issuer.validate(token, TokenClass.ACCESS)
        assert exc_info.value.code == "EXPIRED_CREDENTIAL"

    def test_expired_token_of_other_class_is_malformed(self, issuer: TokenIssuer):
        """Expiry is only reported for a token that is otherwise valid for the class."""
        token, _ = issuer.mint_access(
            "user-1", "session-1", "device-1", ttl=timedelta(seconds=-30),
        )
        with pytest.raises(MalformedTokenError):
            issuer.validate(token, TokenClass.REFRESH)

    @pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", None])
    def test_garbage(self, issuer: TokenIssuer, garbage):
        with pytest.raises(MalformedTokenError):
            issuer.validate(garbage, TokenClass.ACCESS)

    def test_foreign_secret(self, issuer: TokenIssuer):
        other = TokenIssuer("another-access", "another-refresh")
        pair = other.mint("user-1", "session-1", "device-1")
        with pytest.raises(MalformedTokenError):
            issuer.validate(pair.access_token, TokenClass.ACCESS)

    def test_missing_claims(self, issuer: TokenIssuer):
        token = jwt.encode(
            {"user_id": "u", "typ": "access", "exp": 4102444800},
            ACCESS_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(MalformedTokenError):
            issuer.validate(token, TokenClass.ACCESS)

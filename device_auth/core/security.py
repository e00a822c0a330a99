"""
Password hashing & small credential helpers.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).
- ``DUMMY_PASSWORD_HASH`` lets login spend the same bcrypt work when
  the user does not exist, so timing does not reveal which half of the
  credential pair was wrong.
"""

import secrets

import bcrypt

# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


DUMMY_PASSWORD_HASH = hash_password(secrets.token_urlsafe(16))


# ── Opaque identifiers ──────────────────────────────────────────────


def generate_secure_token(nbytes: int = 32) -> str:
    """Hex-encoded random token (``nbytes`` bytes of entropy)."""
    return secrets.token_hex(nbytes)


def mask(value: str | None, keep: int = 8) -> str:
    """Shorten an identifier for log lines: ``"3f9a2c1b..."``."""
    if not value:
        return "-"
    return f"{value[:keep]}..."

"""
Domain error taxonomy for the session subsystem.

Services raise these; the exception handler in ``device_auth.main``
turns them into JSON responses.  ``code`` is the stable, caller-facing
discriminator (clients retry a refresh only on ``EXPIRED_CREDENTIAL``).
``reason`` is internal-only detail that goes to the logs, never to the
response body.
"""


class SessionAuthError(Exception):
    """Base class for every error the auth subsystem raises on purpose."""

    status_code: int = 401
    code: str = "INVALID_SESSION"
    default_message: str = "Authentication failed"

    def __init__(self, message: str | None = None, *, reason: str | None = None):
        self.message = message or self.default_message
        self.reason = reason
        super().__init__(self.message)


class ConfigurationError(SessionAuthError):
    """Missing or invalid startup configuration (fatal, never per-request)."""

    status_code = 500
    code = "CONFIG_ERROR"
    default_message = "Server configuration error"


class InvalidCredentialsError(SessionAuthError):
    # Same message for unknown user and wrong password.
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"


class MissingCredentialError(SessionAuthError):
    code = "MISSING_CREDENTIAL"
    default_message = "Session ID or access token is required"


class MalformedTokenError(SessionAuthError):
    code = "MALFORMED_CREDENTIAL"
    default_message = "Invalid authentication token"


class ExpiredTokenError(SessionAuthError):
    code = "EXPIRED_CREDENTIAL"
    default_message = "Token has expired"


class SessionNotFoundError(SessionAuthError):
    """Revoked, expired or never-existed — indistinguishable to the caller."""

    code = "INVALID_SESSION"
    default_message = "Invalid or expired session"


class SessionExpiredError(SessionNotFoundError):
    """The session row itself is dead; token refresh is not attempted."""

    default_message = "Session expired"


class UserNotFoundError(SessionAuthError):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


class UnauthorizedDeviceActionError(SessionAuthError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Not authorized to perform this action"


class ConflictError(SessionAuthError):
    """A uniqueness constraint rejected an insert."""

    status_code = 409
    code = "CONFLICT"
    default_message = "Conflicting session state"


class StoreTimeoutError(SessionAuthError):
    status_code = 503
    code = "SERVER_ERROR"
    default_message = "Internal server error"

"""Auth error taxonomy.

Token errors are per-request and expected; the Authentication Gate turns them
into 401 responses. The business errors below are raised by AuthService and
translated to HTTP status codes in the auth routes.
"""


class AuthError(Exception):
    """Base authentication error."""


class InvalidTokenError(AuthError):
    """Token failed structural, cryptographic or claim verification."""


class InvalidTokenClaimError(InvalidTokenError):
    """Token verified but a claim has an unusable value (e.g. `sub` is not a UUID)."""


class JwksFetchError(AuthError):
    """Remote key set could not be retrieved or parsed ("couldn't check", not "invalid")."""


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password."""


class AccountLockedError(AuthError):
    """Too many failed login attempts for this email."""


class InvalidRefreshTokenError(AuthError):
    """Refresh token unknown, expired, revoked or orphaned."""


class RefreshTokenReusedError(InvalidRefreshTokenError):
    """Another rotation consumed the refresh token between validation and revocation."""


class EmailAlreadyRegisteredError(AuthError):
    pass


class PasswordPolicyError(AuthError):
    """Password rejected by the complexity policy."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Password validation failed: " + "; ".join(errors))

from tickr.models.user import User
from tickr.models.refresh_token import RefreshToken
from tickr.models.blacklisted_token import BlacklistedToken

__all__ = [
    "User",
    "RefreshToken",
    "BlacklistedToken",
]

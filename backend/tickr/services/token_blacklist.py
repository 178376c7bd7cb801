"""Revoked access-token registry keyed by the token's `jti`.

Lookups read claims without verifying the signature: the blacklist check runs
alongside full verification, never instead of it.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from jose import jwt
from jose.exceptions import JWTError

from tickr.core.clock import Clock, from_epoch_seconds, utc_now
from tickr.models.blacklisted_token import BlacklistedToken
from tickr.repositories.base import BlacklistedTokenRepository

logger = logging.getLogger(__name__)

# Used when a token's own exp cannot be read; matches the default access-token TTL
DEFAULT_BLACKLIST_TTL = timedelta(seconds=900)


def _unverified_claims(token: str) -> dict[str, Any] | None:
    if not token or token.count(".") != 2:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    return claims if isinstance(claims, dict) else None


def extract_jti(token: str) -> str | None:
    claims = _unverified_claims(token)
    if claims is None:
        return None
    jti = claims.get("jti")
    return jti if isinstance(jti, str) and jti else None


def extract_expiration(token: str, now: datetime) -> datetime:
    """The token's exp, or now + 900s when it cannot be read."""
    claims = _unverified_claims(token)
    exp = claims.get("exp") if claims else None
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        try:
            return from_epoch_seconds(exp)
        except (OverflowError, OSError, ValueError):
            pass
    return now + DEFAULT_BLACKLIST_TTL


class BlacklistRegistry:
    def __init__(self, repository: BlacklistedTokenRepository, *, clock: Clock = utc_now):
        self.repository = repository
        self._clock = clock

    async def add(self, token: str, user_id: uuid.UUID, reason: str | None = None) -> bool:
        """Blacklist by jti. Returns False (and logs) when the token has no jti."""
        jti = extract_jti(token)
        if jti is None:
            logger.warning("Cannot blacklist token for user %s: missing JTI", user_id)
            return False
        if await self.repository.exists_by_jti(jti):
            return True
        now = self._clock()
        await self.repository.add(
            BlacklistedToken(
                token_jti=jti,
                user_id=user_id,
                blacklisted_at=now,
                expires_at=extract_expiration(token, now),
                reason=reason,
            )
        )
        logger.info("Blacklisted token (JTI: %s) for user: %s, reason: %s", jti, user_id, reason)
        return True

    async def is_blacklisted(self, token: str) -> bool:
        jti = extract_jti(token)
        if jti is None:
            return False
        return await self.repository.exists_by_jti(jti)


async def sweep_expired_blacklist_entries(repository: BlacklistedTokenRepository, now: datetime) -> int:
    """Delete entries whose expires_at < now; such tokens already fail the exp check."""
    return await repository.delete_expired(now)

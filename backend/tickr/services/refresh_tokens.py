"""Opaque refresh tokens: create, validate, revoke, and the expiry sweep.

Rows are keyed by the SHA-256 of the token. A refresh exchanges one token for
one new token; the caller validates first, mints the replacement pair, and
only then revokes the old token.
"""

import logging
import uuid
from datetime import datetime, timedelta

from tickr.core.auth import create_refresh_token, hash_refresh_token
from tickr.core.clock import Clock, utc_now
from tickr.models.refresh_token import RefreshToken
from tickr.repositories.base import RefreshTokenRepository

logger = logging.getLogger(__name__)

REFRESH_TOKEN_VALIDITY = timedelta(days=30)


class RefreshTokenService:
    def __init__(
        self,
        repository: RefreshTokenRepository,
        *,
        validity: timedelta = REFRESH_TOKEN_VALIDITY,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.validity = validity
        self._clock = clock

    async def create(self, user_id: uuid.UUID) -> str:
        token = create_refresh_token()
        now = self._clock()
        await self.repository.add(
            RefreshToken(
                user_id=user_id,
                token_hash=hash_refresh_token(token),
                expires_at=now + self.validity,
                created_at=now,
            )
        )
        logger.info("Created refresh token for user: %s", user_id)
        return token

    async def validate_and_get_user_id(self, token: str) -> uuid.UUID | None:
        """Owning user id, or None. Expired rows are deleted on the way out."""
        if not token:
            return None
        row = await self.repository.find_by_token_hash(hash_refresh_token(token))
        if row is None:
            logger.warning("Refresh token not found")
            return None
        if self._clock() > row.expires_at:
            logger.warning("Refresh token expired for user: %s", row.user_id)
            await self.repository.delete_by_token_hash(row.token_hash)
            return None
        return row.user_id

    async def revoke(self, token: str) -> bool:
        """Delete the row for `token`. False when no row was removed (already revoked)."""
        deleted = await self.repository.delete_by_token_hash(hash_refresh_token(token))
        if deleted:
            logger.info("Revoked refresh token")
        return deleted > 0

    async def revoke_all_for_user(self, user_id: uuid.UUID) -> int:
        count = await self.repository.delete_all_for_user(user_id)
        logger.info("Revoked %d refresh token(s) for user: %s", count, user_id)
        return count

    async def statistics(self, now: datetime | None = None) -> dict[str, int]:
        now = now or self._clock()
        total = await self.repository.count()
        expired = await self.repository.count_expired(now)
        return {"total": total, "active": total - expired, "expired": expired}


async def sweep_expired_refresh_tokens(repository: RefreshTokenRepository, now: datetime) -> int:
    """Delete rows whose expires_at < now. Returns the number removed."""
    return await repository.delete_expired(now)

"""Register, login, refresh and logout.

AuthService is built per unit of work: it receives the repositories of one
transaction plus the process-wide token codec and login guard.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from tickr.core.auth import hash_password, verify_password
from tickr.core.clock import Clock, utc_now
from tickr.core.metrics import LOGIN_ATTEMPTS
from tickr.models.user import User
from tickr.repositories.base import Repositories
from tickr.services.errors import (
    AccountLockedError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    PasswordPolicyError,
    RefreshTokenReusedError,
)
from tickr.services.login_attempts import LoginAttemptGuard
from tickr.services.password_policy import PasswordValidator
from tickr.services.refresh_tokens import REFRESH_TOKEN_VALIDITY, RefreshTokenService
from tickr.services.token_blacklist import BlacklistRegistry
from tickr.services.token_codec import TokenCodec

logger = logging.getLogger(__name__)

LOCKED_MESSAGE = "Account temporarily locked due to too many failed attempts. Please try again later."


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    user: User


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AuthService:
    def __init__(
        self,
        repositories: Repositories,
        token_codec: TokenCodec,
        login_guard: LoginAttemptGuard,
        password_validator: PasswordValidator | None = None,
        *,
        refresh_validity: timedelta = REFRESH_TOKEN_VALIDITY,
        clock: Clock = utc_now,
    ):
        self.users = repositories.users
        self.token_codec = token_codec
        self.login_guard = login_guard
        self.password_validator = password_validator or PasswordValidator()
        self.refresh_tokens = RefreshTokenService(
            repositories.refresh_tokens, validity=refresh_validity, clock=clock
        )
        self.blacklist = BlacklistRegistry(repositories.blacklisted_tokens, clock=clock)
        self._clock = clock

    async def _issue_tokens(self, user: User) -> TokenPair:
        access = self.token_codec.generate_token(user.id, user.email)
        refresh = await self.refresh_tokens.create(user.id)
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=self.token_codec.props.ttl_seconds,
            user=user,
        )

    async def register(self, email: str, password: str) -> TokenPair:
        email = normalize_email(email)
        errors = self.password_validator.validate(password)
        if errors:
            raise PasswordPolicyError(errors)
        if await self.users.get_by_email(email) is not None:
            raise EmailAlreadyRegisteredError("Email already registered")
        user = await self.users.add(
            User(email=email, password_hash=hash_password(password), created_at=self._clock())
        )
        logger.info("User registered: %s (id: %s)", email, user.id)
        return await self._issue_tokens(user)

    async def login(self, email: str, password: str) -> TokenPair:
        email = normalize_email(email)
        if await self.login_guard.is_blocked(email):
            LOGIN_ATTEMPTS.labels(outcome="locked").inc()
            logger.warning("Login attempt for locked account: %s", email)
            raise AccountLockedError(LOCKED_MESSAGE)

        user = await self.users.get_by_email(email)
        if user is None or not user.password_hash or not verify_password(password, user.password_hash):
            await self.login_guard.record_failed_attempt(email)
            remaining = await self.login_guard.get_remaining_attempts(email)
            LOGIN_ATTEMPTS.labels(outcome="invalid_credentials").inc()
            logger.warning("Failed login attempt for %s. Remaining attempts: %d", email, remaining)
            raise InvalidCredentialsError("Invalid email or password")

        await self.login_guard.reset_failed_attempts(email)
        LOGIN_ATTEMPTS.labels(outcome="success").inc()
        logger.info("User logged in: %s (id: %s)", email, user.id)
        return await self._issue_tokens(user)

    async def try_refresh(self, refresh_token: str) -> TokenPair | None:
        """Rotate: validate the old token, mint a new pair, then revoke the old token.

        Returns None when the token is unknown, expired or orphaned; the unit of
        work can still be committed so the removal of an expired row persists.
        Raises RefreshTokenReusedError when a concurrent rotation revoked the
        token first; the caller must roll back the freshly minted pair.
        """
        token = (refresh_token or "").strip()
        user_id = await self.refresh_tokens.validate_and_get_user_id(token)
        if user_id is None:
            return None
        user = await self.users.get_by_id(user_id)
        if user is None:
            logger.error("User not found for valid refresh token: %s", user_id)
            return None
        pair = await self._issue_tokens(user)
        if not await self.refresh_tokens.revoke(token):
            logger.warning("Refresh token for user %s already consumed by a concurrent rotation", user_id)
            raise RefreshTokenReusedError("Invalid or expired refresh token")
        logger.info("Access token refreshed for user: %s", user_id)
        return pair

    async def refresh(self, refresh_token: str) -> TokenPair:
        pair = await self.try_refresh(refresh_token)
        if pair is None:
            raise InvalidRefreshTokenError("Invalid or expired refresh token")
        return pair

    async def logout(self, user_id: uuid.UUID, access_token: str) -> int:
        """Blacklist the access token (best effort) and revoke every refresh token of the user."""
        if not await self.blacklist.add(access_token, user_id, reason="logout"):
            logger.info("Access token for user %s not blacklisted (no jti)", user_id)
        revoked = await self.refresh_tokens.revoke_all_for_user(user_id)
        logger.info("User logged out: %s (%d refresh token(s) revoked)", user_id, revoked)
        return revoked

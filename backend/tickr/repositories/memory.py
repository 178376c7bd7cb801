"""In-memory repositories for tests and single-process development.

No rollback: writes made inside a failed unit of work stay applied.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from tickr.models.blacklisted_token import BlacklistedToken
from tickr.models.refresh_token import RefreshToken
from tickr.models.user import User
from tickr.repositories.base import Repositories


class MemoryUserRepository:
    def __init__(self) -> None:
        self.users: dict[uuid.UUID, User] = {}

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return self.users.get(user_id)

    async def get_by_email(self, email: str) -> User | None:
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    async def add(self, user: User) -> User:
        if await self.get_by_email(user.email) is not None:
            raise ValueError(f"email already stored: {user.email}")
        if user.id is None:
            user.id = uuid.uuid4()
        if user.created_at is None:
            user.created_at = datetime.now(timezone.utc)
        self.users[user.id] = user
        return user


class MemoryRefreshTokenRepository:
    def __init__(self) -> None:
        self.tokens: dict[str, RefreshToken] = {}  # token_hash -> row

    async def add(self, token: RefreshToken) -> None:
        if token.token_hash in self.tokens:
            raise ValueError("duplicate refresh token hash")
        if token.id is None:
            token.id = uuid.uuid4()
        self.tokens[token.token_hash] = token

    async def find_by_token_hash(self, token_hash: str) -> RefreshToken | None:
        return self.tokens.get(token_hash)

    async def delete_by_token_hash(self, token_hash: str) -> int:
        return 1 if self.tokens.pop(token_hash, None) is not None else 0

    async def delete_all_for_user(self, user_id: uuid.UUID) -> int:
        doomed = [h for h, row in self.tokens.items() if row.user_id == user_id]
        for token_hash in doomed:
            del self.tokens[token_hash]
        return len(doomed)

    async def delete_expired(self, now: datetime) -> int:
        doomed = [h for h, row in self.tokens.items() if row.expires_at < now]
        for token_hash in doomed:
            del self.tokens[token_hash]
        return len(doomed)

    async def count(self) -> int:
        return len(self.tokens)

    async def count_expired(self, now: datetime) -> int:
        return sum(1 for row in self.tokens.values() if row.expires_at < now)


class MemoryBlacklistedTokenRepository:
    def __init__(self) -> None:
        self.entries: dict[str, BlacklistedToken] = {}  # jti -> row

    async def add(self, entry: BlacklistedToken) -> None:
        if entry.token_jti in self.entries:
            raise ValueError(f"jti already blacklisted: {entry.token_jti}")
        if entry.id is None:
            entry.id = uuid.uuid4()
        self.entries[entry.token_jti] = entry

    async def exists_by_jti(self, jti: str) -> bool:
        return jti in self.entries

    async def delete_expired(self, now: datetime) -> int:
        doomed = [jti for jti, row in self.entries.items() if row.expires_at < now]
        for jti in doomed:
            del self.entries[jti]
        return len(doomed)


class MemoryRepositoryProvider:
    def __init__(self) -> None:
        self.repositories = Repositories(
            users=MemoryUserRepository(),
            refresh_tokens=MemoryRefreshTokenRepository(),
            blacklisted_tokens=MemoryBlacklistedTokenRepository(),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Repositories]:
        yield self.repositories

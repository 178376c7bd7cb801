"""Repository contracts consumed by the auth services.

Services only see these protocols; `sql.py` backs them with SQLAlchemy and
`memory.py` with process-local dicts (tests, single-node development).
"""

from __future__ import annotations

import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from tickr.models.blacklisted_token import BlacklistedToken
from tickr.models.refresh_token import RefreshToken
from tickr.models.user import User


class UserRepository(Protocol):
    async def get_by_id(self, user_id: uuid.UUID) -> User | None: ...

    async def get_by_email(self, email: str) -> User | None: ...

    async def add(self, user: User) -> User: ...


class RefreshTokenRepository(Protocol):
    async def add(self, token: RefreshToken) -> None: ...

    async def find_by_token_hash(self, token_hash: str) -> RefreshToken | None: ...

    async def delete_by_token_hash(self, token_hash: str) -> int: ...

    async def delete_all_for_user(self, user_id: uuid.UUID) -> int: ...

    async def delete_expired(self, now: datetime) -> int: ...

    async def count(self) -> int: ...

    async def count_expired(self, now: datetime) -> int: ...


class BlacklistedTokenRepository(Protocol):
    async def add(self, entry: BlacklistedToken) -> None: ...

    async def exists_by_jti(self, jti: str) -> bool: ...

    async def delete_expired(self, now: datetime) -> int: ...


@dataclass
class Repositories:
    users: UserRepository
    refresh_tokens: RefreshTokenRepository
    blacklisted_tokens: BlacklistedTokenRepository


class RepositoryProvider(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[Repositories]:
        """Open a unit of work: committed on clean exit, rolled back on error."""
        ...

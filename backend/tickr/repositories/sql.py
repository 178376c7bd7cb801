"""SQLAlchemy-backed repositories sharing one AsyncSession per unit of work."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tickr.models.blacklisted_token import BlacklistedToken
from tickr.models.refresh_token import RefreshToken
from tickr.models.user import User
from tickr.repositories.base import Repositories


class SqlUserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        r = await self.session.execute(select(User).where(User.id == user_id))
        return r.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        r = await self.session.execute(select(User).where(User.email == email))
        return r.scalar_one_or_none()

    async def add(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user)
        return user


class SqlRefreshTokenRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, token: RefreshToken) -> None:
        self.session.add(token)
        await self.session.flush()

    async def find_by_token_hash(self, token_hash: str) -> RefreshToken | None:
        r = await self.session.execute(select(RefreshToken).where(RefreshToken.token_hash == token_hash))
        return r.scalar_one_or_none()

    async def delete_by_token_hash(self, token_hash: str) -> int:
        # rowcount 0 means a concurrent transaction already removed the row
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(RefreshToken).where(RefreshToken.token_hash == token_hash)
        )
        return result.rowcount or 0

    async def delete_all_for_user(self, user_id: uuid.UUID) -> int:
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(RefreshToken).where(RefreshToken.user_id == user_id)
        )
        return result.rowcount or 0

    async def delete_expired(self, now: datetime) -> int:
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(RefreshToken).where(RefreshToken.expires_at < now)
        )
        return result.rowcount or 0

    async def count(self) -> int:
        r = await self.session.execute(select(func.count(RefreshToken.id)))
        return r.scalar() or 0

    async def count_expired(self, now: datetime) -> int:
        r = await self.session.execute(select(func.count(RefreshToken.id)).where(RefreshToken.expires_at < now))
        return r.scalar() or 0


class SqlBlacklistedTokenRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: BlacklistedToken) -> None:
        self.session.add(entry)
        await self.session.flush()

    async def exists_by_jti(self, jti: str) -> bool:
        r = await self.session.execute(select(BlacklistedToken.id).where(BlacklistedToken.token_jti == jti))
        return r.scalar_one_or_none() is not None

    async def delete_expired(self, now: datetime) -> int:
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(BlacklistedToken).where(BlacklistedToken.expires_at < now)
        )
        return result.rowcount or 0


def sql_repositories(session: AsyncSession) -> Repositories:
    return Repositories(
        users=SqlUserRepository(session),
        refresh_tokens=SqlRefreshTokenRepository(session),
        blacklisted_tokens=SqlBlacklistedTokenRepository(session),
    )


class SqlRepositoryProvider:
    """One session and one transaction per unit of work."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Repositories]:
        async with self._session_maker() as session:
            try:
                yield sql_repositories(session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

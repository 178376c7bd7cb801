"""Commit/rollback behaviour of repository transactions on the refresh and logout paths."""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from httpx import AsyncClient

from tickr.repositories.memory import MemoryRefreshTokenRepository, MemoryRepositoryProvider
from tickr.repositories.sql import SqlRefreshTokenRepository, SqlRepositoryProvider
from tickr.services.errors import InvalidRefreshTokenError
from tickr.services.refresh_tokens import RefreshTokenService


class TrackingProvider(MemoryRepositoryProvider):
    """Records how every transaction ended: ("commit", None) or ("rollback", exception name)."""

    def __init__(self) -> None:
        super().__init__()
        self.outcomes: list[tuple[str, str | None]] = []

    @asynccontextmanager
    async def transaction(self):
        try:
            yield self.repositories
        except BaseException as e:
            self.outcomes.append(("rollback", type(e).__name__))
            raise
        self.outcomes.append(("commit", None))


class ConcurrentlyRotatedRepository(MemoryRefreshTokenRepository):
    """Once armed, the next lookup returns the row while another transaction deletes it."""

    armed = False

    async def find_by_token_hash(self, token_hash: str):
        row = await super().find_by_token_hash(token_hash)
        if self.armed and row is not None:
            self.armed = False
            await self.delete_by_token_hash(token_hash)
        return row


class RecordingSession:
    def __init__(self, rowcount: int = 1):
        self.events: list[str] = []
        self.statements: list = []
        self.rowcount = rowcount

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.events.append("close")

    async def execute(self, statement):
        self.statements.append(statement)
        return SimpleNamespace(rowcount=self.rowcount)

    async def commit(self):
        self.events.append("commit")

    async def rollback(self):
        self.events.append("rollback")


@pytest.fixture
def repositories() -> TrackingProvider:
    return TrackingProvider()


@pytest.mark.asyncio
async def test_sql_transaction_commits_on_clean_exit():
    session = RecordingSession()
    provider = SqlRepositoryProvider(lambda: session)

    async with provider.transaction() as repos:
        assert isinstance(repos.refresh_tokens, SqlRefreshTokenRepository)

    assert session.events == ["commit", "close"]


@pytest.mark.asyncio
async def test_sql_transaction_rolls_back_and_reraises():
    session = RecordingSession()
    provider = SqlRepositoryProvider(lambda: session)

    with pytest.raises(InvalidRefreshTokenError):
        async with provider.transaction():
            raise InvalidRefreshTokenError("Invalid or expired refresh token")

    assert session.events == ["rollback", "close"]


@pytest.mark.asyncio
async def test_sql_delete_by_token_hash_reports_rowcount():
    session = RecordingSession(rowcount=0)
    repo = SqlRefreshTokenRepository(session)

    assert await repo.delete_by_token_hash("abc") == 0
    statement = str(session.statements[0])
    assert statement.startswith("DELETE FROM refresh_tokens")
    assert "refresh_tokens.token_hash" in statement
    assert await RefreshTokenService(repo).revoke("already-gone") is False


@pytest.mark.asyncio
async def test_expired_refresh_commits_row_removal(client: AsyncClient, repositories, registered_user):
    _, body = registered_user
    store = repositories.repositories.refresh_tokens
    (row,) = store.tokens.values()
    row.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
    repositories.outcomes.clear()

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid or expired refresh token"
    assert repositories.outcomes == [("commit", None)]
    assert store.tokens == {}


@pytest.mark.asyncio
async def test_unknown_refresh_token_commits(client: AsyncClient, repositories):
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": "never-issued"})

    assert resp.status_code == 400
    assert repositories.outcomes == [("commit", None)]


@pytest.mark.asyncio
async def test_rotation_lost_to_concurrent_request_rolls_back(client: AsyncClient, repositories, registered_user):
    _, body = registered_user
    racing = ConcurrentlyRotatedRepository()
    racing.tokens = repositories.repositories.refresh_tokens.tokens
    repositories.repositories.refresh_tokens = racing
    racing.armed = True
    repositories.outcomes.clear()

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid or expired refresh token"
    assert repositories.outcomes == [("rollback", "RefreshTokenReusedError")]


@pytest.mark.asyncio
async def test_successful_refresh_commits(client: AsyncClient, repositories, registered_user):
    _, body = registered_user
    repositories.outcomes.clear()

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": body["refresh_token"]})

    assert resp.status_code == 200
    assert repositories.outcomes == [("commit", None)]


@pytest.mark.asyncio
async def test_logout_commits(client: AsyncClient, repositories, registered_user, auth_headers):
    repositories.outcomes.clear()

    resp = await client.post("/api/v1/auth/logout", headers=auth_headers)

    assert resp.status_code == 200
    # gate blacklist lookup, then the route's own unit of work
    assert repositories.outcomes == [("commit", None), ("commit", None)]
    assert repositories.repositories.refresh_tokens.tokens == {}
    assert len(repositories.repositories.blacklisted_tokens.entries) == 1


@pytest.mark.asyncio
async def test_failed_login_rolls_back(client: AsyncClient, repositories, registered_user):
    email, _ = registered_user
    repositories.outcomes.clear()

    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": "Wrong-Passw0rd!"})

    assert resp.status_code == 401
    assert repositories.outcomes == [("rollback", "HTTPException")]

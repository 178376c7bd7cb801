"""
Brute-force friction for login: per-identifier failure window and lockout.

Open -> Locked after max_attempts failures within the lockout window; Locked
lasts exactly lockout_duration from the lockout timestamp, after which the
record is discarded. State lives in an AttemptStore: process memory by default,
Redis when REDIS_URL is set so that several workers share one view.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from redis.exceptions import RedisError

from tickr.core.clock import Clock, utc_now
from tickr.core.metrics import LOCKOUTS

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=15)


@dataclass(frozen=True)
class LoginAttemptRecord:
    failures: tuple[datetime, ...] = ()
    locked_at: datetime | None = None

    @property
    def last_activity(self) -> datetime | None:
        times = list(self.failures)
        if self.locked_at is not None:
            times.append(self.locked_at)
        return max(times) if times else None

    def to_json(self) -> str:
        return json.dumps({
            "failures": [f.isoformat() for f in self.failures],
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        })

    @classmethod
    def from_json(cls, raw: str) -> "LoginAttemptRecord":
        data = json.loads(raw)
        locked_at = data.get("locked_at")
        return cls(
            failures=tuple(datetime.fromisoformat(f) for f in data.get("failures") or []),
            locked_at=datetime.fromisoformat(locked_at) if locked_at else None,
        )


class AttemptStore(Protocol):
    async def get(self, identifier: str) -> LoginAttemptRecord | None: ...

    async def put(self, identifier: str, record: LoginAttemptRecord, ttl: timedelta) -> None: ...

    async def evict(self, identifier: str) -> None: ...

    async def evict_stale(self, cutoff: datetime) -> int: ...


@dataclass
class InMemoryAttemptStore:
    records: dict[str, LoginAttemptRecord] = field(default_factory=dict)

    async def get(self, identifier: str) -> LoginAttemptRecord | None:
        return self.records.get(identifier)

    async def put(self, identifier: str, record: LoginAttemptRecord, ttl: timedelta) -> None:
        self.records[identifier] = record

    async def evict(self, identifier: str) -> None:
        self.records.pop(identifier, None)

    async def evict_stale(self, cutoff: datetime) -> int:
        stale = [
            key for key, record in self.records.items()
            if record.last_activity is None or record.last_activity < cutoff
        ]
        for key in stale:
            del self.records[key]
        return len(stale)


class RedisAttemptStore:
    """JSON record per identifier with a TTL. Redis errors are logged and ignored (fail open)."""

    def __init__(self, client, prefix: str = "login_attempts"):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisAttemptStore":
        from redis.asyncio import from_url

        return cls(from_url(url, encoding="utf-8", decode_responses=True))

    def _key(self, identifier: str) -> str:
        return f"{self._prefix}:{identifier}"

    async def get(self, identifier: str) -> LoginAttemptRecord | None:
        try:
            raw = await self._client.get(self._key(identifier))
        except RedisError as e:
            logger.warning("Login attempts: Redis error on get: %s", e)
            return None
        if not raw:
            return None
        try:
            return LoginAttemptRecord.from_json(raw)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Login attempts: discarding unreadable record for %s: %s", identifier, e)
            return None

    async def put(self, identifier: str, record: LoginAttemptRecord, ttl: timedelta) -> None:
        try:
            await self._client.set(self._key(identifier), record.to_json(), ex=max(1, int(ttl.total_seconds())))
        except RedisError as e:
            logger.warning("Login attempts: Redis error on put: %s", e)

    async def evict(self, identifier: str) -> None:
        try:
            await self._client.delete(self._key(identifier))
        except RedisError as e:
            logger.warning("Login attempts: Redis error on evict: %s", e)

    async def evict_stale(self, cutoff: datetime) -> int:
        # Keys carry their own TTL
        return 0

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except RedisError as e:
            logger.warning("Login attempts: error closing Redis: %s", e)


class LoginAttemptGuard:
    def __init__(
        self,
        store: AttemptStore | None = None,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        lockout_duration: timedelta = LOCKOUT_DURATION,
        clock: Clock = utc_now,
    ):
        self.store = store if store is not None else InMemoryAttemptStore()
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration
        self._clock = clock

    def _recent_failures(self, record: LoginAttemptRecord | None, now: datetime) -> tuple[datetime, ...]:
        if record is None:
            return ()
        window_start = now - self.lockout_duration
        return tuple(f for f in record.failures if f > window_start)

    async def record_failed_attempt(self, identifier: str) -> None:
        now = self._clock()
        record = await self.store.get(identifier)
        if record is not None and record.locked_at is not None and now >= record.locked_at + self.lockout_duration:
            record = None
        failures = self._recent_failures(record, now) + (now,)
        locked_at = record.locked_at if record else None
        if locked_at is None and len(failures) >= self.max_attempts:
            locked_at = now
            LOCKOUTS.inc()
            logger.warning(
                "Account locked for %s after %d failed attempts", identifier, len(failures)
            )
        await self.store.put(
            identifier,
            LoginAttemptRecord(failures=failures, locked_at=locked_at),
            self.lockout_duration,
        )

    async def is_blocked(self, identifier: str) -> bool:
        record = await self.store.get(identifier)
        if record is None or record.locked_at is None:
            return False
        if self._clock() < record.locked_at + self.lockout_duration:
            return True
        await self.store.evict(identifier)
        logger.info("Lockout expired for %s", identifier)
        return False

    async def reset_failed_attempts(self, identifier: str) -> None:
        await self.store.evict(identifier)

    async def get_remaining_attempts(self, identifier: str) -> int:
        record = await self.store.get(identifier)
        failures = self._recent_failures(record, self._clock())
        return max(0, self.max_attempts - len(failures))

    async def sweep(self, now: datetime) -> int:
        """Drop records whose failures and lockout can no longer affect a decision."""
        return await self.store.evict_stale(now - self.lockout_duration)

"""Remote JSON Web Key Set retrieval and caching for RS256 verification.

The cache entry is one immutable `CachedJwkSet` replaced wholesale on refresh.
Readers check it without locking; refreshes are single-flighted behind an
asyncio.Lock and re-check the entry after acquiring it. When a fetch fails,
whatever entry exists (even expired) keeps being served.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx

from tickr.core.clock import Clock, utc_now
from tickr.core.metrics import JWKS_REFRESHES
from tickr.services.errors import JwksFetchError
from tickr.services.http_client import get_http_client

logger = logging.getLogger(__name__)

MAX_JWKS_DOCUMENT_BYTES = 8 * 1024


@dataclass(frozen=True)
class JwkSet:
    keys: tuple[dict[str, Any], ...]

    @classmethod
    def from_document(cls, document: Any) -> "JwkSet":
        if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
            raise JwksFetchError("JWKS document must be an object with a 'keys' array")
        return cls(keys=tuple(k for k in document["keys"] if isinstance(k, dict)))

    def find_rsa_key(self, kid: str | None) -> dict[str, Any] | None:
        """Key with a matching `kid`; a blank `kid` falls back to the first RSA key."""
        rsa_keys = [k for k in self.keys if k.get("kty") == "RSA"]
        if not rsa_keys:
            return None
        if not kid:
            return rsa_keys[0]
        for key in rsa_keys:
            if key.get("kid") == kid:
                return key
        return None


@dataclass(frozen=True)
class CachedJwkSet:
    key_set: JwkSet
    expires_at: datetime


JwksFetcher = Callable[[], Awaitable[JwkSet]]


class HttpJwksFetcher:
    """GET the configured JWKS URI with a timeout independent of the caller's."""

    def __init__(
        self,
        uri: str,
        *,
        timeout_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.uri = uri
        self._timeout = httpx.Timeout(timeout_seconds)
        self._client = client

    async def __call__(self) -> JwkSet:
        client = self._client or get_http_client()
        body = bytearray()
        try:
            async with client.stream(
                "GET", self.uri, timeout=self._timeout, headers={"Accept": "application/json"}
            ) as r:
                r.raise_for_status()
                async for chunk in r.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > MAX_JWKS_DOCUMENT_BYTES:
                        raise JwksFetchError(f"JWKS document exceeds {MAX_JWKS_DOCUMENT_BYTES} bytes")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise JwksFetchError(f"GET {self.uri} failed: {e}") from e
        try:
            document = json.loads(body)
        except ValueError as e:
            raise JwksFetchError("JWKS document is not valid JSON") from e
        return JwkSet.from_document(document)


class JwksCache:
    def __init__(
        self,
        fetcher: JwksFetcher,
        *,
        ttl_seconds: int,
        refresh_margin_seconds: int = 0,
        clock: Clock = utc_now,
    ):
        self._fetcher = fetcher
        self._ttl = timedelta(seconds=ttl_seconds)
        self._refresh_margin = timedelta(seconds=max(0, min(refresh_margin_seconds, ttl_seconds)))
        self._clock = clock
        self._entry: CachedJwkSet | None = None
        self._lock = asyncio.Lock()

    @property
    def entry(self) -> CachedJwkSet | None:
        return self._entry

    def _is_fresh(self, entry: CachedJwkSet, now: datetime) -> bool:
        if now >= entry.expires_at:
            return False
        if not self._refresh_margin:
            return True
        return now < entry.expires_at - self._refresh_margin

    async def get(self, force_refresh: bool = False) -> JwkSet:
        seen = self._entry
        if not force_refresh and seen is not None and self._is_fresh(seen, self._clock()):
            return seen.key_set

        async with self._lock:
            current = self._entry
            # Someone else refreshed while we waited for the lock
            if current is not None and current is not seen and self._is_fresh(current, self._clock()):
                return current.key_set
            if not force_refresh and current is not None and self._is_fresh(current, self._clock()):
                return current.key_set
            return await self._refresh(current)

    async def _refresh(self, current: CachedJwkSet | None) -> JwkSet:
        try:
            key_set = await self._fetcher()
        except JwksFetchError as e:
            if current is None:
                JWKS_REFRESHES.labels(outcome="failed").inc()
                logger.warning("JWKS fetch failed and no cached key set exists: %s", e)
                raise
            JWKS_REFRESHES.labels(outcome="stale").inc()
            logger.warning("JWKS fetch failed, serving cached key set (expires %s): %s", current.expires_at, e)
            return current.key_set

        self._entry = CachedJwkSet(key_set=key_set, expires_at=self._clock() + self._ttl)
        JWKS_REFRESHES.labels(outcome="fetched").inc()
        logger.info("JWKS refreshed: %d key(s)", len(key_set.keys))
        return key_set

"""Access-token codec contract and the claim checks shared by both signing strategies.

Exactly one strategy is active per deployment (see `build_token_codec`):
HS384 with a symmetric secret, or RS256 with a local private key for signing
and a remote JWKS for verification. Verification never trusts the header's
algorithm: a codec only accepts tokens carrying its own `alg`.
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from jose import jws, jwt
from jose.backends.base import Key
from jose.exceptions import JWSError, JWTError

from tickr.config import Settings
from tickr.core.clock import Clock, epoch_seconds, from_epoch_seconds, utc_now
from tickr.services.errors import InvalidTokenClaimError, InvalidTokenError, JwksFetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSettings:
    issuer: str
    audience: str
    ttl_seconds: int = 900
    clock_skew_seconds: int = 60
    claim_version: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenSettings":
        return cls(
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            ttl_seconds=settings.jwt_ttl_seconds,
            clock_skew_seconds=settings.jwt_clock_skew_seconds,
            claim_version=settings.jwt_claim_version,
        )


@dataclass(frozen=True)
class Claims:
    jti: str | None
    subject: str | None
    issuer: str
    audience: tuple[str, ...]
    issued_at: datetime
    not_before: datetime | None
    expires_at: datetime
    email: str | None
    version: int | None


@dataclass(frozen=True)
class TokenResult:
    """Outcome of `TokenCodec.verify`: claims on success, the rejection otherwise."""

    claims: Claims | None = None
    error: InvalidTokenError | None = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


class TokenCodec(ABC):
    algorithm: str

    def __init__(self, props: TokenSettings, clock: Clock = utc_now):
        self.props = props
        self._clock = clock

    @property
    @abstractmethod
    def signing_key(self) -> Key: ...

    @abstractmethod
    async def _verification_key(self, header: dict[str, Any]) -> Key: ...

    def _extra_headers(self) -> dict[str, Any] | None:
        return None

    def generate_token(self, user_id: uuid.UUID, email: str) -> str:
        issued_at = epoch_seconds(self._clock())
        claims = {
            "jti": str(uuid.uuid4()),
            "sub": str(user_id),
            "iss": self.props.issuer,
            "aud": self.props.audience,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": issued_at + self.props.ttl_seconds,
            "email": email,
            "v": self.props.claim_version,
        }
        return jwt.encode(claims, self.signing_key, algorithm=self.algorithm, headers=self._extra_headers())

    async def verify(self, token: str) -> TokenResult:
        """Full verification. Never raises for a bad token; the error is returned instead."""
        try:
            claims = await self._parse_claims(token)
        except InvalidTokenError as e:
            logger.debug("Token rejected: %s", e)
            return TokenResult(error=e)
        return TokenResult(claims=claims)

    async def is_valid(self, token: str) -> bool:
        return (await self.verify(token)).ok

    async def extract_user_id(self, token: str) -> uuid.UUID:
        claims = await self._parse_claims(token)
        return user_id_from_claims(claims)

    async def extract_email(self, token: str) -> str:
        claims = await self._parse_claims(token)
        if not claims.email:
            raise InvalidTokenClaimError("email claim missing")
        return claims.email

    async def _parse_claims(self, token: str) -> Claims:
        if not isinstance(token, str) or token.count(".") != 2:
            raise InvalidTokenError("Malformed JWT")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise InvalidTokenError("Malformed JWT") from e

        alg = header.get("alg")
        if alg != self.algorithm:
            raise InvalidTokenError(f"Unsupported alg: {alg}")

        try:
            key = await self._verification_key(header)
        except JwksFetchError as e:
            raise InvalidTokenError(f"Unable to fetch JWKS: {e}") from e

        try:
            payload = jws.verify(token, key, algorithms=[self.algorithm])
        except JWSError as e:
            raise InvalidTokenError("Invalid signature") from e

        try:
            raw = json.loads(payload)
        except ValueError as e:
            raise InvalidTokenError("Malformed claims") from e
        if not isinstance(raw, dict):
            raise InvalidTokenError("Malformed claims")
        return self._validate_claims(raw)

    def _validate_claims(self, raw: dict[str, Any]) -> Claims:
        now = self._clock()
        skew = timedelta(seconds=self.props.clock_skew_seconds)

        issuer = raw.get("iss")
        if issuer is None:
            raise InvalidTokenError("Missing iss")
        if issuer != self.props.issuer:
            raise InvalidTokenError("Invalid issuer")

        audience = _audience(raw.get("aud"))
        if self.props.audience not in audience:
            raise InvalidTokenError("Invalid audience")

        expires_at = _time_claim(raw, "exp")
        if expires_at is None:
            raise InvalidTokenError("Missing exp")
        if now > expires_at + skew:
            raise InvalidTokenError("Token expired")

        not_before = _time_claim(raw, "nbf")
        if not_before is not None and now < not_before - skew:
            raise InvalidTokenError("Token not yet valid")

        issued_at = _time_claim(raw, "iat")
        if issued_at is None:
            raise InvalidTokenError("Missing iat")
        if issued_at > now + skew:
            raise InvalidTokenError("iat in the future")

        version = raw.get("v")
        return Claims(
            jti=_string_claim(raw, "jti"),
            subject=_string_claim(raw, "sub"),
            issuer=issuer,
            audience=audience,
            issued_at=issued_at,
            not_before=not_before,
            expires_at=expires_at,
            email=_string_claim(raw, "email"),
            version=version if isinstance(version, int) and not isinstance(version, bool) else None,
        )


def user_id_from_claims(claims: Claims) -> uuid.UUID:
    try:
        return uuid.UUID(claims.subject)
    except (TypeError, ValueError) as e:
        raise InvalidTokenClaimError("sub is not a valid UUID") from e


def _audience(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(a for a in value if isinstance(a, str))
    return ()


def _string_claim(raw: dict[str, Any], name: str) -> str | None:
    value = raw.get(name)
    return value if isinstance(value, str) and value else None


def _time_claim(raw: dict[str, Any], name: str) -> datetime | None:
    value = raw.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidTokenError(f"Invalid {name}")
    try:
        return from_epoch_seconds(value)
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidTokenError(f"Invalid {name}") from e


def build_token_codec(settings: Settings, clock: Clock = utc_now, jwks_fetcher=None) -> TokenCodec:
    """Select the single active strategy from configuration. Raises ConfigurationError."""
    from tickr.services.hmac_codec import HmacTokenCodec
    from tickr.services.jwks import HttpJwksFetcher, JwksCache
    from tickr.services.rsa_codec import RsaJwksTokenCodec

    settings.validate_jwt_config()
    props = TokenSettings.from_settings(settings)
    if not settings.jwt_accept_rs256:
        return HmacTokenCodec(props, settings.jwt_hmac_secret_base64, clock=clock)

    fetcher = jwks_fetcher or HttpJwksFetcher(
        settings.jwt_jwks_uri,
        timeout_seconds=settings.jwks_fetch_timeout_seconds,
    )
    cache = JwksCache(
        fetcher,
        ttl_seconds=settings.jwt_jwks_cache_ttl_seconds,
        refresh_margin_seconds=settings.jwt_jwks_cache_refresh_margin_seconds,
        clock=clock,
    )
    return RsaJwksTokenCodec(
        props,
        private_key_pem=settings.jwt_rsa_private_key_pem,
        key_id=settings.jwt_rsa_key_id,
        jwks_cache=cache,
        clock=clock,
    )

"""HS384 access tokens signed and verified with one symmetric secret."""

import base64
import binascii
from typing import Any

from jose import jwk
from jose.backends.base import Key
from jose.constants import ALGORITHMS
from jose.exceptions import JWKError

from tickr.config import ConfigurationError
from tickr.core.clock import Clock, utc_now
from tickr.services.token_codec import TokenCodec, TokenSettings

# HMAC-SHA384 needs a key at least as long as its output
MIN_SECRET_BYTES = 48


def decode_secret(value: str) -> bytes:
    """Decode standard or URL-safe base64 (padding optional)."""
    raw = "".join(value.split())
    padded = raw + "=" * (-len(raw) % 4)
    try:
        if "-" in raw or "_" in raw:
            return base64.urlsafe_b64decode(padded)
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError("JWT HMAC secret is not valid base64") from e


class HmacTokenCodec(TokenCodec):
    algorithm = ALGORITHMS.HS384

    def __init__(self, props: TokenSettings, secret_base64: str, clock: Clock = utc_now):
        super().__init__(props, clock)
        secret = decode_secret(secret_base64)
        if len(secret) < MIN_SECRET_BYTES:
            raise ConfigurationError(
                f"JWT HMAC secret must be >= {MIN_SECRET_BYTES} bytes after base64 decode (got {len(secret)})"
            )
        try:
            self._key = jwk.construct(secret, self.algorithm)
        except JWKError as e:
            raise ConfigurationError(f"JWT HMAC secret rejected: {e}") from e

    @property
    def signing_key(self) -> Key:
        return self._key

    async def _verification_key(self, header: dict[str, Any]) -> Key:
        return self._key

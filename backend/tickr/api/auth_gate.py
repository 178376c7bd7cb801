"""Bearer-token authentication middleware.

Requests without a bearer token pass through unauthenticated; routes that need
an identity depend on `get_current_principal`. A presented token must verify
and must not be blacklisted, otherwise the request ends here with a 401
envelope. Token errors never propagate past this module.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tickr.core.metrics import TOKEN_REJECTIONS
from tickr.services.errors import InvalidTokenClaimError
from tickr.services.token_blacklist import BlacklistRegistry
from tickr.services.token_codec import user_id_from_claims

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class AuthPrincipal:
    user_id: uuid.UUID
    email: str | None
    token: str
    jti: str | None
    expires_at: datetime


class NotAuthenticatedError(Exception):
    """A protected route was reached without an authenticated principal."""


def auth_error_response(path: str, message: str | None) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={
            "error": "invalid_token",
            "message": message,
            "path": path,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        headers={
            "Cache-Control": "no-store",
            "Pragma": "no-cache",
            "WWW-Authenticate": "Bearer",
        },
    )


async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError) -> JSONResponse:
    return auth_error_response(request.url.path, str(exc) or "Authentication required")


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization")
    if not header or header[: len(BEARER_PREFIX)].lower() != BEARER_PREFIX:
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


class AuthGateMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        token = bearer_token(request)
        if token is None:
            return await call_next(request)

        path = request.url.path
        codec = request.app.state.token_codec
        result = await codec.verify(token)
        if not result.ok:
            TOKEN_REJECTIONS.labels(reason="invalid").inc()
            return auth_error_response(path, str(result.error))

        try:
            user_id = user_id_from_claims(result.claims)
        except InvalidTokenClaimError as e:
            TOKEN_REJECTIONS.labels(reason="invalid").inc()
            logger.debug("Token rejected: %s", e)
            return auth_error_response(path, str(e))

        async with request.app.state.repositories.transaction() as repos:
            revoked = await BlacklistRegistry(repos.blacklisted_tokens).is_blacklisted(token)
        if revoked:
            TOKEN_REJECTIONS.labels(reason="revoked").inc()
            logger.debug("Revoked token presented (JTI: %s) for user %s", result.claims.jti, user_id)
            return auth_error_response(path, "Token has been revoked")

        request.state.principal = AuthPrincipal(
            user_id=user_id,
            email=result.claims.email,
            token=token,
            jti=result.claims.jti,
            expires_at=result.claims.expires_at,
        )
        return await call_next(request)

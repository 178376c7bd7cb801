"""Auth: register, login, refresh, logout, me, jwks."""

import logging
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from tickr.api.auth_gate import AuthPrincipal
from tickr.api.deps import build_auth_service, get_auth_service, get_current_principal
from tickr.services.auth_flows import AuthService, TokenPair
from tickr.services.errors import (
    AccountLockedError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    PasswordPolicyError,
)
from tickr.services.rsa_codec import RsaJwksTokenCodec

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterBody(BaseModel):
    email: str
    password: str


class LoginBody(BaseModel):
    email: str
    password: str


class RefreshBody(BaseModel):
    refresh_token: str


class UserOut(BaseModel):
    id: uuid.UUID
    email: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires
    user: UserOut


class LogoutResponse(BaseModel):
    message: str = "Logged out"
    revoked_refresh_tokens: int


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        user=UserOut(id=pair.user.id, email=pair.user.email),
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    summary="Register a new user",
    responses={
        400: {"description": "Email and password required, weak password or email already registered"},
    },
)
async def register(
    service: Annotated[AuthService, Depends(get_auth_service)],
    body: RegisterBody,
) -> TokenResponse:
    if not body.email.strip() or not body.password:
        raise HTTPException(status_code=400, detail="Email and password required")
    try:
        pair = await service.register(body.email, body.password)
    except PasswordPolicyError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "Password does not meet requirements",
                "errors": e.errors,
                "requirements": service.password_validator.requirements(),
            },
        ) from e
    except EmailAlreadyRegisteredError as e:
        raise HTTPException(status_code=400, detail="Email already registered") from e
    return _token_response(pair)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login with email and password",
    responses={
        401: {"description": "Invalid email or password"},
        429: {"description": "Account temporarily locked"},
    },
)
async def login(
    service: Annotated[AuthService, Depends(get_auth_service)],
    body: LoginBody,
) -> TokenResponse:
    if not body.email.strip() or not body.password:
        raise HTTPException(status_code=401, detail="Email and password required")
    try:
        pair = await service.login(body.email, body.password)
    except AccountLockedError as e:
        raise HTTPException(status_code=429, detail=str(e)) from e
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail="Invalid email or password") from e
    return _token_response(pair)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={
        400: {"description": "Refresh token invalid, expired or already used"},
    },
)
async def refresh_tokens(request: Request, body: RefreshBody) -> TokenResponse:
    """Exchange refresh_token for new access_token and refresh_token (rotation).

    Owns its unit of work: a rejected token still commits (removal of an expired
    row), a rotation lost to a concurrent request rolls back.
    """
    try:
        async with request.app.state.repositories.transaction() as repos:
            pair = await build_auth_service(request, repos).try_refresh(body.refresh_token)
    except InvalidRefreshTokenError as e:
        raise HTTPException(status_code=400, detail="Invalid or expired refresh token") from e
    if pair is None:
        raise HTTPException(status_code=400, detail="Invalid or expired refresh token")
    return _token_response(pair)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Revoke the current access token and all refresh tokens",
    responses={
        401: {"description": "Not authenticated or invalid token"},
    },
)
async def logout(
    principal: Annotated[AuthPrincipal, Depends(get_current_principal)],
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> LogoutResponse:
    revoked = await service.logout(principal.user_id, principal.token)
    return LogoutResponse(revoked_refresh_tokens=revoked)


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={
        401: {"description": "Not authenticated or invalid token"},
    },
)
async def me(principal: Annotated[AuthPrincipal, Depends(get_current_principal)]) -> UserOut:
    return UserOut(id=principal.user_id, email=principal.email or "")


@router.get(
    "/jwks",
    summary="Public keys for verifying access tokens (RS256 deployments only)",
    responses={
        404: {"description": "HS384 deployment, no public keys"},
    },
)
async def jwks(request: Request) -> dict[str, Any]:
    codec = request.app.state.token_codec
    if not isinstance(codec, RsaJwksTokenCodec):
        raise HTTPException(status_code=404, detail="No public keys published")
    return codec.public_jwks()

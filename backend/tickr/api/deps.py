"""FastAPI dependencies: unit of work, current principal, auth service."""

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request

from tickr.api.auth_gate import AuthPrincipal, NotAuthenticatedError
from tickr.repositories.base import Repositories
from tickr.services.auth_flows import AuthService
from tickr.services.refresh_tokens import REFRESH_TOKEN_VALIDITY


async def get_repositories(request: Request) -> AsyncIterator[Repositories]:
    """One transaction per request: committed after the route returns, rolled back on error."""
    async with request.app.state.repositories.transaction() as repos:
        yield repos


def get_current_principal(request: Request) -> AuthPrincipal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise NotAuthenticatedError("Authentication required")
    return principal


def build_auth_service(request: Request, repos: Repositories) -> AuthService:
    state = request.app.state
    return AuthService(
        repos,
        state.token_codec,
        state.login_guard,
        state.password_validator,
        refresh_validity=getattr(state, "refresh_validity", REFRESH_TOKEN_VALIDITY),
    )


def get_auth_service(
    request: Request,
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> AuthService:
    return build_auth_service(request, repos)

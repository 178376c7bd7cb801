"""Tests for auth endpoints: register, login, me, refresh, logout, jwks."""

import pytest
from httpx import AsyncClient

PASSWORD = "Tr0ub4dor&Zebra!"


@pytest.mark.asyncio
async def test_register(client: AsyncClient):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"email": "NewUser@Test.com ", "password": PASSWORD},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["email"] == "newuser@test.com"
    assert data["access_token"].count(".") == 2
    assert data["refresh_token"]
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 900


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, registered_user):
    email, _ = registered_user
    resp = await client.post(
        "/api/v1/auth/register",
        json={"email": email.upper(), "password": PASSWORD},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Email already registered"


@pytest.mark.asyncio
async def test_register_weak_password(client: AsyncClient):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"email": "weak@test.com", "password": "password123"},
    )
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert "Password contains common weak patterns" in detail["errors"]
    assert detail["requirements"].startswith("At least 12 characters")


@pytest.mark.asyncio
async def test_register_requires_email_and_password(client: AsyncClient):
    resp = await client.post("/api/v1/auth/register", json={"email": " ", "password": ""})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_login(client: AsyncClient, registered_user):
    email, _ = registered_user
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["email"] == email
    assert "access_token" in data


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, registered_user):
    email, _ = registered_user
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_unknown_email(client: AsyncClient):
    resp = await client.post("/api/v1/auth/login", json={"email": "ghost@test.com", "password": PASSWORD})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_login_lockout_after_five_failures(client: AsyncClient, registered_user):
    email, _ = registered_user
    for _ in range(5):
        resp = await client.post("/api/v1/auth/login", json={"email": email, "password": "wrong"})
        assert resp.status_code == 401
    # Correct password is refused while locked
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 429
    assert "locked" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_successful_login_resets_failures(client: AsyncClient, registered_user):
    email, _ = registered_user
    for _ in range(4):
        await client.post("/api/v1/auth/login", json={"email": email, "password": "wrong"})
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200
    for _ in range(4):
        await client.post("/api/v1/auth/login", json={"email": email, "password": "wrong"})
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_me(client: AsyncClient, registered_user, auth_headers: dict):
    email, body = registered_user
    resp = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json() == {"id": body["user"]["id"], "email": email}


@pytest.mark.asyncio
async def test_me_unauthorized(client: AsyncClient):
    resp = await client.get("/api/v1/auth/me")
    assert resp.status_code == 401
    data = resp.json()
    assert data["error"] == "invalid_token"
    assert data["message"] == "Authentication required"
    assert data["path"] == "/api/v1/auth/me"
    assert resp.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_invalid_bearer_token_rejected_by_gate(client: AsyncClient):
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert resp.status_code == 401
    data = resp.json()
    assert set(data) == {"error", "message", "path", "timestamp"}
    assert data["error"] == "invalid_token"
    assert resp.headers["cache-control"] == "no-store"
    assert resp.headers["pragma"] == "no-cache"


@pytest.mark.asyncio
async def test_invalid_bearer_token_rejected_on_public_route(client: AsyncClient):
    """A presented token must be valid even where no identity is required."""
    resp = await client.get("/health", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("header", ["Bearer ", "Bearer    ", "bearer"])
async def test_blank_bearer_token_treated_as_anonymous(client: AsyncClient, header: str):
    resp = await client.get("/health", headers={"Authorization": header})
    assert resp.status_code == 200

    resp = await client.get("/api/v1/auth/me", headers={"Authorization": header})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Authentication required"


@pytest.mark.asyncio
async def test_non_bearer_scheme_passes_through(client: AsyncClient):
    resp = await client.get("/health", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_refresh_rotates_and_is_single_use(client: AsyncClient, registered_user):
    _, body = registered_user
    original = body["refresh_token"]
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": original})
    assert resp.status_code == 200
    rotated = resp.json()
    assert rotated["refresh_token"] != original
    assert rotated["access_token"] != body["access_token"]

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": original})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid or expired refresh token"

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": rotated["refresh_token"]})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_refresh_unknown_token(client: AsyncClient):
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": "nope"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_logout_requires_authentication(client: AsyncClient):
    resp = await client.post("/api/v1/auth/logout")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_register_me_logout_end_to_end(client: AsyncClient):
    """register -> me 200 -> logout -> same access token 401 -> same refresh token 400."""
    resp = await client.post(
        "/api/v1/auth/register",
        json={"email": "e2e@test.com", "password": PASSWORD},
    )
    assert resp.status_code == 200
    tokens = resp.json()
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    resp = await client.get("/api/v1/auth/me", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["email"] == "e2e@test.com"

    resp = await client.post("/api/v1/auth/logout", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["revoked_refresh_tokens"] == 1

    resp = await client.get("/api/v1/auth/me", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["message"] == "Token has been revoked"

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_logout_revokes_every_session(client: AsyncClient, registered_user, auth_headers):
    email, first = registered_user
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    second = resp.json()

    resp = await client.post("/api/v1/auth/logout", headers=auth_headers)
    assert resp.json()["revoked_refresh_tokens"] == 2

    for refresh_token in (first["refresh_token"], second["refresh_token"]):
        resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert resp.status_code == 400
    # The second session's access token was not blacklisted and stays valid until it expires
    resp = await client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {second['access_token']}"}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_jwks_not_published_for_hmac(client: AsyncClient):
    resp = await client.get("/api/v1/auth/jwks")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok"}

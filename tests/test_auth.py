"""
Tests for authentication endpoints.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from rbac_admin.models.audit_log import AuditRecord
from rbac_admin.services.auth import create_tokens

PASSWORD = "Str0ng!Pass"


@pytest.mark.asyncio
async def test_register_user(client: AsyncClient):
    """New accounts start with no roles and no permissions."""
    response = await client.post(
        "/api/auth/register",
        json={
            "username": "newuser",
            "email": "newuser@example.com",
            "password": PASSWORD,
            "first_name": "New",
            "last_name": "User",
        },
    )

    assert response.status_code == 201
    data = response.json()
    assert data["user"]["email"] == "newuser@example.com"
    assert data["user"]["full_name"] == "New User"
    assert "password_hash" not in data["user"]  # Should not expose password
    assert data["tokens"]["token_type"] == "bearer"

    profile = await client.get(
        "/api/auth/profile",
        headers={"Authorization": f"Bearer {data['tokens']['access_token']}"},
    )
    assert profile.status_code == 200
    assert profile.json()["roles"] == []
    assert profile.json()["permissions"] == []


@pytest.mark.asyncio
async def test_register_duplicate(client: AsyncClient, test_user):
    response = await client.post(
        "/api/auth/register",
        json={
            "username": "someone_else",
            "email": test_user.email,
            "password": PASSWORD,
        },
    )

    assert response.status_code == 409
    assert response.json()["code"] == "USER_EXISTS"


@pytest.mark.asyncio
@pytest.mark.parametrize("password", ["Sh0rt!", "alllowercase1!", "NoDigits!!", "NoSpecial123"])
async def test_register_weak_password(client: AsyncClient, password: str):
    response = await client.post(
        "/api/auth/register",
        json={"username": "weakling", "email": "weak@example.com", "password": password},
    )

    assert response.status_code == 422  # Validation error


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, db, test_user):
    response = await client.post(
        "/api/auth/login",
        data={"username": test_user.username, "password": PASSWORD},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["tokens"]["access_token"]
    assert data["user"]["last_login_at"] is not None

    logins = await db.execute(select(AuditRecord).where(AuditRecord.action == "login"))
    assert logins.scalar_one().actor_id == test_user.id


@pytest.mark.asyncio
async def test_login_by_email(client: AsyncClient, test_user):
    response = await client.post(
        "/api/auth/login",
        data={"username": test_user.email, "password": PASSWORD},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, db, test_user):
    response = await client.post(
        "/api/auth/login",
        data={"username": test_user.username, "password": "Wr0ng!Pass"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"
    assert response.headers["WWW-Authenticate"] == "Bearer"

    failed = await db.execute(select(AuditRecord).where(AuditRecord.action == "login_failed"))
    assert failed.scalar_one().details == {"login": test_user.username}


@pytest.mark.asyncio
async def test_login_deactivated(client: AsyncClient, user_factory):
    user = await user_factory.create(is_active=False)

    response = await client.post(
        "/api/auth/login",
        data={"username": user.username, "password": PASSWORD},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "ACCOUNT_DEACTIVATED"


@pytest.mark.asyncio
async def test_profile_requires_token(client: AsyncClient):
    response = await client.get("/api/auth/profile")

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_REQUIRED"


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    response = await client.get(
        "/api/auth/profile",
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_INVALID"


@pytest.mark.asyncio
async def test_token_of_deactivated_user_rejected(client: AsyncClient, db, test_user, auth_headers):
    test_user.is_active = False
    await db.commit()

    response = await client.get("/api/auth/profile", headers=auth_headers)

    assert response.status_code == 401
    assert response.json()["code"] == "USER_INVALID"


@pytest.mark.asyncio
async def test_profile_lists_effective_grants(client: AsyncClient, db, manager_user, headers_for):
    response = await client.get("/api/auth/profile", headers=headers_for(manager_user))

    assert response.status_code == 200
    data = response.json()
    assert data["roles"] == ["manager"]
    assert "users:read" in data["permissions"]
    assert "users:delete" not in data["permissions"]


@pytest.mark.asyncio
async def test_refresh(client: AsyncClient, test_user):
    tokens = create_tokens(test_user.id)

    response = await client.post("/api/auth/refresh", json={"refresh_token": tokens.refresh_token})
    assert response.status_code == 200
    assert response.json()["access_token"]

    # An access token is not accepted as a refresh token
    response = await client.post("/api/auth/refresh", json={"refresh_token": tokens.access_token})
    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_INVALID"


@pytest.mark.asyncio
async def test_change_password(client: AsyncClient, test_user, auth_headers):
    response = await client.post(
        "/api/auth/change-password",
        json={"current_password": "Wr0ng!Pass", "new_password": "N3w!Password"},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_CURRENT_PASSWORD"

    response = await client.post(
        "/api/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "N3w!Password"},
        headers=auth_headers,
    )
    assert response.status_code == 204

    response = await client.post(
        "/api/auth/login",
        data={"username": test_user.username, "password": "N3w!Password"},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_logout_is_audited(client: AsyncClient, db, test_user, auth_headers):
    response = await client.post("/api/auth/logout", headers=auth_headers)

    assert response.status_code == 204
    logout = await db.execute(select(AuditRecord).where(AuditRecord.action == "logout"))
    assert logout.scalar_one().actor_id == test_user.id


@pytest.mark.asyncio
async def test_health_sets_request_id(client: AsyncClient):
    response = await client.get("/health", headers={"X-Request-ID": "trace-123"})

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Request-ID"] == "trace-123"

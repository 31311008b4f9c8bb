"""
Tests for permission catalogue endpoints.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_create_permission_default_name(client: AsyncClient, admin_auth_headers):
    response = await client.post(
        "/api/permissions",
        json={"resource": "articles", "action": "publish", "description": "Publish articles"},
        headers=admin_auth_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "articles:publish"
    assert data["is_active"] is True
    assert data["role_count"] == 0


@pytest.mark.asyncio
async def test_create_duplicate_permission(client: AsyncClient, admin_auth_headers):
    response = await client.post(
        "/api/permissions",
        json={"resource": "users", "action": "read", "name": "users_read_again"},
        headers=admin_auth_headers,
    )

    assert response.status_code == 409
    assert response.json()["code"] == "PERMISSION_EXISTS"


@pytest.mark.asyncio
async def test_delete_permission_in_use(
    client: AsyncClient, admin_auth_headers, role_factory, permission_factory
):
    """Refused while an active role grant refers to it; allowed once revoked."""
    role = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")

    response = await client.post(
        f"/api/roles/{role.id}/permissions",
        json={"permission_id": str(edit.id)},
        headers=admin_auth_headers,
    )
    assert response.status_code == 201

    response = await client.delete(f"/api/permissions/{edit.id}", headers=admin_auth_headers)
    assert response.status_code == 400
    data = response.json()
    assert data["code"] == "PERMISSION_IN_USE"
    assert data["role_count"] == 1

    response = await client.delete(
        f"/api/roles/{role.id}/permissions/{edit.id}", headers=admin_auth_headers
    )
    assert response.status_code == 204

    response = await client.delete(f"/api/permissions/{edit.id}", headers=admin_auth_headers)
    assert response.status_code == 204

    response = await client.get(f"/api/permissions/{edit.id}", headers=admin_auth_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "PERMISSION_NOT_FOUND"


@pytest.mark.asyncio
async def test_system_permission_protected(client: AsyncClient, admin_auth_headers, lookup):
    permission = await lookup.permission("users", "read")

    response = await client.patch(
        f"/api/permissions/{permission.id}/deactivate", headers=admin_auth_headers
    )
    assert response.status_code == 400
    assert response.json()["code"] == "SYSTEM_PERMISSION_PROTECTED"

    response = await client.delete(f"/api/permissions/{permission.id}", headers=admin_auth_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "SYSTEM_PERMISSION_PROTECTED"


@pytest.mark.asyncio
async def test_deactivate_permission(
    client: AsyncClient,
    admin_auth_headers,
    test_user,
    auth_headers,
    role_factory,
    permission_factory,
    grants,
):
    role = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, role)
    await grants.grant(role, edit)

    response = await client.patch(
        f"/api/permissions/{edit.id}/deactivate", headers=admin_auth_headers
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    profile = await client.get("/api/auth/profile", headers=auth_headers)
    assert profile.json()["roles"] == ["editor"]
    assert profile.json()["permissions"] == []


@pytest.mark.asyncio
async def test_bulk_create_reports_failures(client: AsyncClient, admin_auth_headers):
    response = await client.post(
        "/api/permissions/bulk",
        json={
            "permissions": [
                {"resource": "reports", "action": "view"},
                {"resource": "users", "action": "read"},
                {"resource": "reports", "action": "export"},
            ]
        },
        headers=admin_auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert [p["name"] for p in data["created"]] == ["reports:view", "reports:export"]
    assert data["errors"] == [
        {
            "index": 1,
            "resource": "users",
            "action": "read",
            "code": "PERMISSION_EXISTS",
            "detail": "Permission with this name or resource/action already exists",
        }
    ]


@pytest.mark.asyncio
async def test_list_and_summaries(client: AsyncClient, manager_auth_headers):
    response = await client.get(
        "/api/permissions", params={"resource": "roles"}, headers=manager_auth_headers
    )
    assert response.status_code == 200
    assert response.json()["total"] == 5

    response = await client.get("/api/permissions/resources/list", headers=manager_auth_headers)
    assert response.status_code == 200
    resources = {r["resource"]: r["permission_count"] for r in response.json()}
    assert resources["users"] == 5
    assert resources["profile"] == 3

    response = await client.get("/api/permissions/actions/list", headers=manager_auth_headers)
    actions = {a["action"]: a["permission_count"] for a in response.json()}
    assert actions["read"] == 6


@pytest.mark.asyncio
async def test_permission_detail_lists_roles(client: AsyncClient, manager_auth_headers, lookup):
    permission = await lookup.permission("profile", "read")

    response = await client.get(f"/api/permissions/{permission.id}", headers=manager_auth_headers)

    assert response.status_code == 200
    roles = sorted(r["role_name"] for r in response.json()["roles"])
    assert roles == ["admin", "guest", "manager", "super_admin", "user"]


@pytest.mark.asyncio
async def test_update_rejects_null_name(
    client: AsyncClient, admin_auth_headers, permission_factory
):
    publish = await permission_factory.create("articles", "publish")

    response = await client.put(
        f"/api/permissions/{publish.id}", json={"name": None}, headers=admin_auth_headers
    )
    assert response.status_code == 422

    response = await client.get(f"/api/permissions/{publish.id}", headers=admin_auth_headers)
    assert response.json()["name"] == "articles:publish"

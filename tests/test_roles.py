"""
Tests for role management endpoints.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_create_role_with_permissions(
    client: AsyncClient, admin_auth_headers, permission_factory
):
    edit = await permission_factory.create("articles", "edit")
    read = await permission_factory.create("articles", "read")

    response = await client.post(
        "/api/roles",
        json={
            "name": "editor",
            "description": "Edits articles",
            "permission_ids": [str(edit.id), str(read.id)],
        },
        headers=admin_auth_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "editor"
    assert data["is_protected"] is False
    assert data["permission_count"] == 2

    detail = await client.get(f"/api/roles/{data['id']}", headers=admin_auth_headers)
    assert detail.status_code == 200
    names = sorted(p["name"] for p in detail.json()["permissions"])
    assert names == ["articles:edit", "articles:read"]


@pytest.mark.asyncio
async def test_create_duplicate_role(client: AsyncClient, admin_auth_headers):
    response = await client.post("/api/roles", json={"name": "admin"}, headers=admin_auth_headers)

    assert response.status_code == 409
    assert response.json()["code"] == "ROLE_EXISTS"


@pytest.mark.asyncio
async def test_invalid_role_name(client: AsyncClient, admin_auth_headers):
    response = await client.post(
        "/api/roles", json={"name": "bad name!"}, headers=admin_auth_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_reader_cannot_mutate(client: AsyncClient, manager_auth_headers):
    response = await client.get("/api/roles", headers=manager_auth_headers)
    assert response.status_code == 200
    assert response.json()["total"] == 5

    response = await client.post(
        "/api/roles", json={"name": "sneaky"}, headers=manager_auth_headers
    )
    assert response.status_code == 403
    assert response.json()["code"] == "ROLE_DENIED"


@pytest.mark.asyncio
async def test_list_roles_without_read_permission(client: AsyncClient, seeded, auth_headers):
    response = await client.get("/api/roles", headers=auth_headers)

    assert response.status_code == 403
    assert response.json()["required"] == {"resource": "roles", "action": "read"}


@pytest.mark.asyncio
async def test_system_role_protected(client: AsyncClient, admin_auth_headers, lookup):
    role = await lookup.role("user")

    response = await client.delete(f"/api/roles/{role.id}", headers=admin_auth_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "SYSTEM_ROLE_PROTECTED"

    response = await client.patch(f"/api/roles/{role.id}/deactivate", headers=admin_auth_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "SYSTEM_ROLE_PROTECTED"

    response = await client.put(
        f"/api/roles/{role.id}", json={"name": "member"}, headers=admin_auth_headers
    )
    assert response.status_code == 400

    # Descriptions of system roles may still change
    response = await client.put(
        f"/api/roles/{role.id}", json={"description": "Everyone"}, headers=admin_auth_headers
    )
    assert response.status_code == 200
    assert response.json()["description"] == "Everyone"


@pytest.mark.asyncio
async def test_delete_role_in_use(
    client: AsyncClient, admin_auth_headers, test_user, role_factory, grants
):
    role = await role_factory.create(name="editor")
    await grants.assign(test_user, role)

    response = await client.delete(f"/api/roles/{role.id}", headers=admin_auth_headers)
    assert response.status_code == 400
    data = response.json()
    assert data["code"] == "ROLE_IN_USE"
    assert data["user_count"] == 1

    response = await client.delete(
        f"/api/users/{test_user.id}/roles/{role.id}", headers=admin_auth_headers
    )
    assert response.status_code == 204

    response = await client.delete(f"/api/roles/{role.id}", headers=admin_auth_headers)
    assert response.status_code == 204

    response = await client.get(f"/api/roles/{role.id}", headers=admin_auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_deactivated_role_stops_conferring(
    client: AsyncClient,
    admin_auth_headers,
    test_user,
    auth_headers,
    role_factory,
    permission_factory,
    grants,
):
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit)

    profile = await client.get("/api/auth/profile", headers=auth_headers)
    assert profile.json()["permissions"] == ["articles:edit"]

    response = await client.patch(f"/api/roles/{editor.id}/deactivate", headers=admin_auth_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    profile = await client.get("/api/auth/profile", headers=auth_headers)
    assert profile.json()["roles"] == []
    assert profile.json()["permissions"] == []

    response = await client.patch(f"/api/roles/{editor.id}/activate", headers=admin_auth_headers)
    assert response.status_code == 200

    profile = await client.get("/api/auth/profile", headers=auth_headers)
    assert profile.json()["permissions"] == ["articles:edit"]


@pytest.mark.asyncio
async def test_grant_and_revoke_permission(
    client: AsyncClient, admin_auth_headers, role_factory, permission_factory
):
    role = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")

    response = await client.post(
        f"/api/roles/{role.id}/permissions",
        json={"permission_id": str(edit.id)},
        headers=admin_auth_headers,
    )
    assert response.status_code == 201
    assert [p["name"] for p in response.json()] == ["articles:edit"]

    response = await client.post(
        f"/api/roles/{role.id}/permissions",
        json={"permission_id": str(edit.id)},
        headers=admin_auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["code"] == "PERMISSION_ALREADY_ASSIGNED"

    response = await client.delete(
        f"/api/roles/{role.id}/permissions/{edit.id}", headers=admin_auth_headers
    )
    assert response.status_code == 204

    response = await client.delete(
        f"/api/roles/{role.id}/permissions/{edit.id}", headers=admin_auth_headers
    )
    assert response.status_code == 404
    assert response.json()["code"] == "ASSIGNMENT_NOT_FOUND"


@pytest.mark.asyncio
async def test_list_role_permissions_hides_inactive(
    client: AsyncClient, admin_auth_headers, role_factory, permission_factory, grants
):
    role = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    purge = await permission_factory.create("articles", "purge", is_active=False)
    await grants.grant(role, edit)
    await grants.grant(role, purge)

    response = await client.get(f"/api/roles/{role.id}/permissions", headers=admin_auth_headers)
    assert [p["name"] for p in response.json()] == ["articles:edit"]

    response = await client.get(
        f"/api/roles/{role.id}/permissions",
        params={"include_inactive": True},
        headers=admin_auth_headers,
    )
    assert sorted(p["name"] for p in response.json()) == ["articles:edit", "articles:purge"]


@pytest.mark.asyncio
async def test_update_rejects_null_name(client: AsyncClient, admin_auth_headers, role_factory):
    role = await role_factory.create(name="editor")

    response = await client.put(
        f"/api/roles/{role.id}", json={"name": None}, headers=admin_auth_headers
    )
    assert response.status_code == 422

    response = await client.get(f"/api/roles/{role.id}", headers=admin_auth_headers)
    assert response.json()["name"] == "editor"

"""
Tests for audit log endpoints.
"""

import json

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from rbac_admin.models.audit_log import AuditRecord


@pytest.mark.asyncio
async def test_denial_visible_to_admin(
    client: AsyncClient, admin_auth_headers, test_user, auth_headers
):
    response = await client.get("/api/roles", headers=auth_headers)
    assert response.status_code == 403

    response = await client.get(
        "/api/audit-logs",
        params={"action": "permission_denied"},
        headers=admin_auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    [item] = data["items"]
    assert item["actor_id"] == str(test_user.id)
    assert item["resource_type"] == "roles"
    assert item["details"]["required"] == {"resource": "roles", "action": "read"}


@pytest.mark.asyncio
async def test_audit_log_requires_admin(client: AsyncClient, manager_auth_headers):
    response = await client.get("/api/audit-logs", headers=manager_auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_get_single_log(client: AsyncClient, db, admin_user, admin_auth_headers):
    await client.post("/api/auth/logout", headers=admin_auth_headers)
    record = (
        await db.execute(select(AuditRecord).where(AuditRecord.action == "logout"))
    ).scalar_one()

    response = await client.get(f"/api/audit-logs/{record.id}", headers=admin_auth_headers)
    assert response.status_code == 200
    assert response.json()["actor_email"] == admin_user.email

    response = await client.get(
        "/api/audit-logs/00000000-0000-0000-0000-000000000000", headers=admin_auth_headers
    )
    assert response.status_code == 404
    assert response.json()["code"] == "AUDIT_LOG_NOT_FOUND"


@pytest.mark.asyncio
async def test_user_feed(
    client: AsyncClient, manager_user, manager_auth_headers, admin_user, admin_auth_headers
):
    await client.post("/api/auth/logout", headers=manager_auth_headers)

    # Own feed needs only audit:read
    response = await client.get(
        f"/api/audit-logs/user/{manager_user.id}", headers=manager_auth_headers
    )
    assert response.status_code == 200
    assert [i["action"] for i in response.json()["items"]] == ["logout"]

    # Someone else's feed needs an admin role as well
    response = await client.get(
        f"/api/audit-logs/user/{admin_user.id}", headers=manager_auth_headers
    )
    assert response.status_code == 403
    assert response.json()["code"] == "ROLE_DENIED"

    response = await client.get(
        f"/api/audit-logs/user/{manager_user.id}", headers=admin_auth_headers
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_recent_and_resource_feeds(
    client: AsyncClient, manager_auth_headers, admin_auth_headers, role_factory
):
    role = await role_factory.create(name="editor")
    response = await client.put(
        f"/api/roles/{role.id}", json={"description": "Edits"}, headers=admin_auth_headers
    )
    assert response.status_code == 200

    response = await client.get(
        "/api/audit-logs/recent", params={"limit": 5}, headers=manager_auth_headers
    )
    assert response.status_code == 200
    assert response.json()[0]["action"] == "role_updated"

    response = await client.get(
        f"/api/audit-logs/resource/role/{role.id}", headers=manager_auth_headers
    )
    assert response.status_code == 200
    [item] = response.json()["items"]
    assert item["details"]["changes"]["description"] == {"old": "Test role", "new": "Edits"}


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, admin_auth_headers, auth_headers):
    await client.get("/api/roles", headers=auth_headers)

    response = await client.get("/api/audit-logs/stats", headers=admin_auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total_actions"] == 1
    assert data["by_action"] == [{"key": "permission_denied", "count": 1}]


@pytest.mark.asyncio
async def test_export_is_audited(client: AsyncClient, db, admin_auth_headers, auth_headers):
    await client.get("/api/roles", headers=auth_headers)

    response = await client.get(
        "/api/audit-logs/export", params={"format": "jsonl"}, headers=admin_auth_headers
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/jsonl")
    rows = [json.loads(line) for line in response.text.splitlines()]
    # Newest first: the export record is written before streaming starts
    assert [r["action"] for r in rows] == ["audit_exported", "permission_denied"]

    response = await client.get("/api/audit-logs/export", headers=admin_auth_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.splitlines()[0].startswith("id,created_at,actor_id")

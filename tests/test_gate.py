"""
Tests for the enforcement gate: pass-through, typed failures and denial audit.
"""

import pytest
from sqlalchemy import select

from rbac_admin.core.authz.gate import EnforcementGate
from rbac_admin.core.authz.interfaces import AuthenticatedIdentity, RequestOrigin
from rbac_admin.core.authz.resolver import AuthorizationResolver
from rbac_admin.core.exceptions import ForbiddenError, SelfActionError, UnauthenticatedError
from rbac_admin.models.audit_log import AuditRecord
from rbac_admin.repositories.grants import GrantStore
from rbac_admin.services.audit import AuditRecorder

ORIGIN = RequestOrigin(ip_address="10.0.0.7", user_agent="pytest", request_id="req-1")


def make_gate(db) -> EnforcementGate:
    return EnforcementGate(AuthorizationResolver(GrantStore(db)), AuditRecorder(db))


def identity_of(user) -> AuthenticatedIdentity:
    return AuthenticatedIdentity(user_id=user.id, username=user.username, email=user.email)


async def audit_records(db, action: str) -> list[AuditRecord]:
    result = await db.execute(select(AuditRecord).where(AuditRecord.action == action))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_missing_identity_is_unauthenticated(db):
    gate = make_gate(db)

    with pytest.raises(UnauthenticatedError):
        gate.require_authenticated(None)

    with pytest.raises(UnauthenticatedError):
        await gate.require_permission(None, "users", "read", ORIGIN)

    # Nothing to attribute an unauthenticated attempt to
    assert await audit_records(db, "permission_denied") == []


@pytest.mark.asyncio
async def test_permission_denied_is_audited(db, test_user):
    gate = make_gate(db)

    with pytest.raises(ForbiddenError) as exc_info:
        await gate.require_permission(identity_of(test_user), "users", "read", ORIGIN)

    assert exc_info.value.code == "PERMISSION_DENIED"
    assert exc_info.value.required == {"resource": "users", "action": "read"}

    [record] = await audit_records(db, "permission_denied")
    assert record.actor_id == test_user.id
    assert record.actor_email == test_user.email
    assert record.resource_type == "users"
    assert record.ip_address == "10.0.0.7"
    assert record.request_id == "req-1"
    assert record.details["required"] == {"resource": "users", "action": "read"}


@pytest.mark.asyncio
async def test_permission_allowed_passes_through(
    db, test_user, role_factory, permission_factory, grants
):
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit)

    decision = await make_gate(db).require_permission(
        identity_of(test_user), "articles", "edit", ORIGIN
    )

    assert decision.allowed
    assert decision.matched.role_name == "editor"
    assert await audit_records(db, "permission_denied") == []


@pytest.mark.asyncio
async def test_any_permission_denied_lists_every_pair(db, test_user):
    with pytest.raises(ForbiddenError) as exc_info:
        await make_gate(db).require_any_permission(
            identity_of(test_user),
            [("users", "update"), ("users", "activate")],
            ORIGIN,
        )

    assert exc_info.value.required == [
        {"resource": "users", "action": "update"},
        {"resource": "users", "action": "activate"},
    ]


@pytest.mark.asyncio
async def test_role_denied(db, test_user):
    gate = make_gate(db)

    with pytest.raises(ForbiddenError) as exc_info:
        await gate.require_any_role(identity_of(test_user), ["super_admin", "admin"], ORIGIN)

    assert exc_info.value.code == "ROLE_DENIED"
    assert exc_info.value.required == ["super_admin", "admin"]

    [record] = await audit_records(db, "role_denied")
    assert record.details["required"] == ["super_admin", "admin"]


@pytest.mark.asyncio
async def test_role_allowed(db, test_user, role_factory, grants):
    await grants.assign(test_user, await role_factory.create(name="editor"))

    decision = await make_gate(db).require_role(identity_of(test_user), "editor", ORIGIN)
    assert decision.allowed


@pytest.mark.asyncio
async def test_self_bypass(db, test_user, user_factory):
    gate = make_gate(db)
    identity = identity_of(test_user)

    decision = await gate.require_self_or_permission(
        identity, test_user.id, "users", "read", ORIGIN
    )
    assert decision.allowed

    other = await user_factory.create()
    with pytest.raises(ForbiddenError):
        await gate.require_self_or_permission(identity, other.id, "users", "read", ORIGIN)


@pytest.mark.asyncio
async def test_self_action_block(db, admin_user, test_user):
    gate = make_gate(db)
    identity = identity_of(admin_user)

    with pytest.raises(SelfActionError) as exc_info:
        gate.forbid_self_action(identity, admin_user.id, "delete")
    assert exc_info.value.code == "SELF_DELETION"

    with pytest.raises(SelfActionError) as exc_info:
        gate.forbid_self_action(identity, admin_user.id, "deactivate")
    assert exc_info.value.code == "SELF_DEACTIVATION"

    # Acting on someone else is not this check's concern
    assert gate.forbid_self_action(identity, test_user.id, "delete") is None

"""
Tests for effective role and permission resolution.
"""

from datetime import datetime, timedelta, timezone

import pytest

from rbac_admin.core.authz.resolver import AuthorizationResolver
from rbac_admin.repositories.grants import GrantStore

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_resolver(db, now: datetime = NOW) -> AuthorizationResolver:
    return AuthorizationResolver(GrantStore(db), clock=lambda: now)


@pytest.mark.asyncio
async def test_editor_scenario(db, test_user, role_factory, permission_factory, grants):
    """Active role with an active, non-expiring permission grant."""
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit)

    resolver = make_resolver(db)

    assert await resolver.has_permission(test_user.id, "articles", "edit")
    assert await resolver.has_role(test_user.id, "editor")
    assert not await resolver.has_permission(test_user.id, "articles", "delete")


@pytest.mark.asyncio
async def test_deactivated_role_grants_nothing(
    db, test_user, role_factory, permission_factory, grants
):
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit)

    editor.is_active = False
    await db.commit()

    resolver = make_resolver(db)
    assert not await resolver.has_permission(test_user.id, "articles", "edit")
    assert not await resolver.has_role(test_user.id, "editor")
    assert await resolver.effective_permissions(test_user.id) == []


@pytest.mark.asyncio
async def test_deactivated_permission_grants_nothing(
    db, test_user, role_factory, permission_factory, grants
):
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    read = await permission_factory.create("articles", "read")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit)
    await grants.grant(editor, read)

    edit.is_active = False
    await db.commit()

    resolver = make_resolver(db)
    assert not await resolver.has_permission(test_user.id, "articles", "edit")
    assert await resolver.has_permission(test_user.id, "articles", "read")


@pytest.mark.asyncio
async def test_expired_role_grant_is_ignored_but_kept(db, test_user, role_factory, grants):
    temp = await role_factory.create(name="temp")
    await grants.assign(test_user, temp, expires_at=NOW - timedelta(seconds=1))

    resolver = make_resolver(db)

    assert not await resolver.has_role(test_user.id, "temp")
    assert await resolver.effective_roles(test_user.id) == []
    # The row itself is still there; expiry is evaluated at read time
    assert await GrantStore(db).user_role_grant_exists(test_user.id, temp.id)


@pytest.mark.asyncio
async def test_grant_expiry_boundary(db, test_user, role_factory, grants):
    """A grant counts strictly before its expiry instant."""
    temp = await role_factory.create(name="temp")
    expires = NOW + timedelta(hours=1)
    await grants.assign(test_user, temp, expires_at=expires)

    assert await make_resolver(db, NOW).has_role(test_user.id, "temp")
    assert await make_resolver(db, expires - timedelta(seconds=1)).has_role(test_user.id, "temp")
    assert not await make_resolver(db, expires).has_role(test_user.id, "temp")


@pytest.mark.asyncio
async def test_expired_permission_grant_is_ignored(
    db, test_user, role_factory, permission_factory, grants
):
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit, expires_at=NOW - timedelta(minutes=5))

    resolver = make_resolver(db)
    assert not await resolver.has_permission(test_user.id, "articles", "edit")
    # Role membership does not depend on its permissions
    assert await resolver.has_role(test_user.id, "editor")


@pytest.mark.asyncio
async def test_inactive_grant_row_is_ignored(db, test_user, role_factory, grants):
    editor = await role_factory.create(name="editor")
    await grants.assign(test_user, editor, is_active=False)

    assert not await make_resolver(db).has_role(test_user.id, "editor")


@pytest.mark.asyncio
async def test_user_without_roles_holds_nothing(db, test_user, seeded):
    """Even seeded 'default' permissions are not implied."""
    resolver = make_resolver(db)

    assert await resolver.effective_roles(test_user.id) == []
    assert await resolver.effective_permissions(test_user.id) == []
    assert not await resolver.has_permission(test_user.id, "profile", "read")

    decision = await resolver.check_permission(test_user.id, "profile", "read")
    assert not decision.allowed
    assert decision.reason == "Missing permission: profile:read"
    assert decision.evaluated_at == NOW


@pytest.mark.asyncio
async def test_overlapping_roles_union_deduplicated(
    db, test_user, role_factory, permission_factory, grants
):
    writer = await role_factory.create(name="writer")
    reviewer = await role_factory.create(name="reviewer")
    read = await permission_factory.create("articles", "read")
    publish = await permission_factory.create("articles", "publish")

    await grants.assign(test_user, writer, expires_at=NOW + timedelta(days=2))
    await grants.assign(test_user, reviewer)
    await grants.grant(writer, read)
    await grants.grant(reviewer, read, expires_at=NOW + timedelta(days=1))
    await grants.grant(reviewer, publish)

    permissions = await make_resolver(db).effective_permissions(test_user.id)
    by_name = {p.name: p for p in permissions}

    assert sorted(by_name) == ["articles:publish", "articles:read"]
    assert set(by_name["articles:read"].role_names) == {"writer", "reviewer"}
    # Earliest expiry among every contributing grant
    assert by_name["articles:read"].valid_until == NOW + timedelta(days=1)
    assert by_name["articles:publish"].valid_until is None


@pytest.mark.asyncio
async def test_any_permission_single_match(
    db, test_user, role_factory, permission_factory, grants
):
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit)

    resolver = make_resolver(db)
    decision = await resolver.check_any_permission(
        test_user.id, [("articles", "delete"), ("articles", "edit")]
    )

    assert decision.allowed
    assert decision.matched.role_name == "editor"
    assert decision.matched.permission_name == "articles:edit"
    assert not await resolver.has_any_permission(
        test_user.id, [("articles", "delete"), ("users", "read")]
    )


@pytest.mark.asyncio
async def test_any_role(db, test_user, role_factory, grants):
    editor = await role_factory.create(name="editor")
    await grants.assign(test_user, editor)

    resolver = make_resolver(db)
    assert await resolver.has_any_role(test_user.id, ["admin", "editor"])
    assert not await resolver.has_any_role(test_user.id, ["admin", "super_admin"])


@pytest.mark.asyncio
async def test_empty_request_lists_are_denied(db, test_user):
    resolver = make_resolver(db)

    assert not await resolver.has_any_permission(test_user.id, [])
    assert not await resolver.has_any_role(test_user.id, [])


@pytest.mark.asyncio
async def test_clock_read_once_per_call(db, test_user, role_factory, permission_factory, grants):
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit)

    calls = []

    def clock():
        calls.append(1)
        return NOW

    resolver = AuthorizationResolver(GrantStore(db), clock=clock)

    await resolver.check_any_permission(test_user.id, [("articles", "edit"), ("a", "b")])
    assert len(calls) == 1

    await resolver.effective_permissions(test_user.id)
    assert len(calls) == 2


class CountingGrantStore(GrantStore):
    """Counts permission lookups against the database."""

    def __init__(self, db):
        super().__init__(db)
        self.permission_lookups = 0

    async def find_matching_permission(self, user_id, pairs, now):
        self.permission_lookups += 1
        return await super().find_matching_permission(user_id, pairs, now)


@pytest.mark.asyncio
async def test_any_permission_is_one_lookup(
    db, test_user, role_factory, permission_factory, grants
):
    editor = await role_factory.create(name="editor")
    edit = await permission_factory.create("articles", "edit")
    await grants.assign(test_user, editor)
    await grants.grant(editor, edit)

    store = CountingGrantStore(db)
    resolver = AuthorizationResolver(store, clock=lambda: NOW)
    pairs = [("articles", "delete"), ("users", "read"), ("articles", "edit"), ("audit", "read")]

    assert await resolver.has_any_permission(test_user.id, pairs)
    assert store.permission_lookups == 1

    assert not await resolver.has_any_permission(test_user.id, pairs[:2])
    assert store.permission_lookups == 2


@pytest.mark.asyncio
async def test_effective_permissions_ignore_assignment_order(
    db, user_factory, role_factory, permission_factory, grants
):
    writer = await role_factory.create(name="writer")
    reviewer = await role_factory.create(name="reviewer")
    read = await permission_factory.create("articles", "read")
    edit = await permission_factory.create("articles", "edit")
    publish = await permission_factory.create("articles", "publish")
    await grants.grant(writer, read)
    await grants.grant(writer, edit)
    await grants.grant(reviewer, read)
    await grants.grant(reviewer, publish)

    first = await user_factory.create()
    second = await user_factory.create()
    await grants.assign(first, writer)
    await grants.assign(first, reviewer)
    await grants.assign(second, reviewer)
    await grants.assign(second, writer)

    resolver = make_resolver(db)
    first_names = {p.name for p in await resolver.effective_permissions(first.id)}
    second_names = {p.name for p in await resolver.effective_permissions(second.id)}

    assert first_names == second_names == {"articles:edit", "articles:publish", "articles:read"}
    assert {r.name for r in await resolver.effective_roles(first.id)} == {
        r.name for r in await resolver.effective_roles(second.id)
    }


@pytest.mark.asyncio
async def test_revoking_missing_grant_changes_nothing(
    db, test_user, user_factory, role_factory, permission_factory, grants
):
    editor = await role_factory.create(name="editor")
    unused = await role_factory.create(name="unused")
    edit = await permission_factory.create("articles", "edit")
    await grants.grant(editor, edit)
    await grants.grant(unused, edit)
    await grants.assign(test_user, editor)
    never_granted = await user_factory.create()

    store = GrantStore(db)
    resolver = make_resolver(db)
    before = await resolver.effective_permissions(test_user.id)

    assert await store.revoke_user_role_grant(test_user.id, unused.id) is False
    assert await store.revoke_user_role_grant(never_granted.id, editor.id) is False

    assert await resolver.effective_permissions(test_user.id) == before
    assert await resolver.effective_permissions(never_granted.id) == []
    assert await resolver.effective_roles(never_granted.id) == []

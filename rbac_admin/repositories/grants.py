"""
Grant store: durable user->role and role->permission grants.

All resolution queries take the evaluation instant ``now`` from the
caller and apply the same filters:

- the grant row is active
- ``expires_at`` is null or later than ``now``
- the role (and, for permissions, the permission) is active

Expired rows are never deleted here; they simply stop matching.
"""

from collections import defaultdict
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.core.authz.interfaces import (
    EffectivePermission,
    EffectiveRole,
    GrantMatch,
    GrantSource,
    PermissionPair,
)
from rbac_admin.core.exceptions import ConflictError, NotFoundError
from rbac_admin.models.rbac import Permission, Role, RolePermissionGrant, UserRoleGrant
from rbac_admin.models.user import User
from rbac_admin.utils.timezone import to_utc_optional


def _unexpired(column, now: datetime):
    return or_(column.is_(None), column > now)


def _user_role_filters(now: datetime) -> tuple:
    return (
        UserRoleGrant.is_active.is_(True),
        _unexpired(UserRoleGrant.expires_at, now),
        Role.is_active.is_(True),
    )


def _role_permission_filters(now: datetime) -> tuple:
    return (
        RolePermissionGrant.is_active.is_(True),
        _unexpired(RolePermissionGrant.expires_at, now),
        Permission.is_active.is_(True),
    )


def _earliest(*values: datetime | None) -> datetime | None:
    present = [v for v in values if v is not None]
    return min(present) if present else None


class GrantStore(GrantSource):
    """
    SQLAlchemy-backed grant store.

    Usage:
        store = GrantStore(db)
        roles = await store.find_active_roles_for_user(user_id, utc_now())
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ============================================================
    # RESOLUTION QUERIES
    # ============================================================

    async def find_active_roles_for_user(
        self, user_id: UUID, now: datetime
    ) -> list[EffectiveRole]:
        result = await self.find_active_roles_for_users([user_id], now)
        return result.get(user_id, [])

    async def find_active_roles_for_users(
        self, user_ids: Sequence[UUID], now: datetime
    ) -> dict[UUID, list[EffectiveRole]]:
        """Active roles for a batch of users in one query."""
        if not user_ids:
            return {}

        stmt = (
            select(
                UserRoleGrant.user_id,
                UserRoleGrant.id,
                UserRoleGrant.assigned_at,
                UserRoleGrant.expires_at,
                Role.id,
                Role.name,
            )
            .join(Role, Role.id == UserRoleGrant.role_id)
            .where(UserRoleGrant.user_id.in_(list(user_ids)), *_user_role_filters(now))
            .order_by(Role.name)
        )
        result = await self.db.execute(stmt)

        roles: dict[UUID, list[EffectiveRole]] = defaultdict(list)
        for user_id, grant_id, assigned_at, expires_at, role_id, role_name in result.all():
            roles[user_id].append(
                EffectiveRole(
                    id=role_id,
                    name=role_name,
                    grant_id=grant_id,
                    assigned_at=to_utc_optional(assigned_at),
                    expires_at=to_utc_optional(expires_at),
                )
            )
        return dict(roles)

    async def find_active_permissions_for_user(
        self, user_id: UUID, now: datetime
    ) -> list[EffectivePermission]:
        stmt = (
            select(
                Permission.id,
                Permission.name,
                Permission.resource,
                Permission.action,
                Role.id,
                Role.name,
                UserRoleGrant.expires_at,
                RolePermissionGrant.expires_at,
            )
            .join(RolePermissionGrant, RolePermissionGrant.permission_id == Permission.id)
            .join(Role, Role.id == RolePermissionGrant.role_id)
            .join(UserRoleGrant, UserRoleGrant.role_id == Role.id)
            .where(
                UserRoleGrant.user_id == user_id,
                *_user_role_filters(now),
                *_role_permission_filters(now),
            )
            .order_by(Permission.resource, Permission.action, Role.name)
        )
        result = await self.db.execute(stmt)

        # One entry per permission name; union of the roles it comes through.
        merged: dict[str, dict] = {}
        for perm_id, name, resource, action, role_id, role_name, ur_exp, rp_exp in result.all():
            entry = merged.setdefault(
                name,
                {
                    "id": perm_id,
                    "resource": resource,
                    "action": action,
                    "role_ids": [],
                    "role_names": [],
                    "valid_until": None,
                },
            )
            if role_id not in entry["role_ids"]:
                entry["role_ids"].append(role_id)
                entry["role_names"].append(role_name)
            entry["valid_until"] = _earliest(
                entry["valid_until"],
                to_utc_optional(ur_exp),
                to_utc_optional(rp_exp),
            )

        return [
            EffectivePermission(
                id=entry["id"],
                name=name,
                resource=entry["resource"],
                action=entry["action"],
                role_ids=tuple(entry["role_ids"]),
                role_names=tuple(entry["role_names"]),
                valid_until=entry["valid_until"],
            )
            for name, entry in merged.items()
        ]

    async def find_matching_permission(
        self,
        user_id: UUID,
        pairs: Sequence[PermissionPair],
        now: datetime,
    ) -> GrantMatch | None:
        if not pairs:
            return None

        wanted = or_(
            *[
                and_(Permission.resource == resource, Permission.action == action)
                for resource, action in pairs
            ]
        )
        stmt = (
            select(
                UserRoleGrant.id,
                Role.id,
                Role.name,
                RolePermissionGrant.id,
                Permission.id,
                Permission.name,
            )
            .select_from(UserRoleGrant)
            .join(Role, Role.id == UserRoleGrant.role_id)
            .join(RolePermissionGrant, RolePermissionGrant.role_id == Role.id)
            .join(Permission, Permission.id == RolePermissionGrant.permission_id)
            .where(
                UserRoleGrant.user_id == user_id,
                *_user_role_filters(now),
                *_role_permission_filters(now),
                wanted,
            )
            .order_by(Permission.name, Role.name)
            .limit(1)
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            return None

        ur_id, role_id, role_name, rp_id, perm_id, perm_name = row
        return GrantMatch(
            role_id=role_id,
            role_name=role_name,
            user_role_grant_id=ur_id,
            permission_id=perm_id,
            permission_name=perm_name,
            role_permission_grant_id=rp_id,
        )

    async def find_matching_role(
        self,
        user_id: UUID,
        role_names: Sequence[str],
        now: datetime,
    ) -> GrantMatch | None:
        if not role_names:
            return None

        stmt = (
            select(UserRoleGrant.id, Role.id, Role.name)
            .join(Role, Role.id == UserRoleGrant.role_id)
            .where(
                UserRoleGrant.user_id == user_id,
                Role.name.in_(list(role_names)),
                *_user_role_filters(now),
            )
            .order_by(Role.name)
            .limit(1)
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            return None

        ur_id, role_id, role_name = row
        return GrantMatch(role_id=role_id, role_name=role_name, user_role_grant_id=ur_id)

    # ============================================================
    # EXISTENCE
    # ============================================================

    async def user_role_grant_exists(self, user_id: UUID, role_id: UUID) -> bool:
        """Any row for the pair, whatever its active flag or expiry."""
        stmt = select(func.count()).select_from(UserRoleGrant).where(
            UserRoleGrant.user_id == user_id,
            UserRoleGrant.role_id == role_id,
        )
        return (await self.db.scalar(stmt) or 0) > 0

    async def role_permission_grant_exists(self, role_id: UUID, permission_id: UUID) -> bool:
        stmt = select(func.count()).select_from(RolePermissionGrant).where(
            RolePermissionGrant.role_id == role_id,
            RolePermissionGrant.permission_id == permission_id,
        )
        return (await self.db.scalar(stmt) or 0) > 0

    # ============================================================
    # MUTATIONS
    # ============================================================

    async def create_user_role_grant(
        self,
        user_id: UUID,
        role_id: UUID,
        assigned_by: UUID | None = None,
        expires_at: datetime | None = None,
    ) -> UserRoleGrant:
        """
        Grant a role to a user.

        Raises:
            NotFoundError: user absent, or role absent or inactive
            ConflictError: a row for the pair already exists
        """
        if await self.db.get(User, user_id) is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")

        role = await self.db.get(Role, role_id)
        if role is None or not role.is_active:
            raise NotFoundError("Role not found or inactive", code="ROLE_NOT_FOUND")

        if await self.user_role_grant_exists(user_id, role_id):
            raise ConflictError("User already has this role", code="ROLE_ALREADY_ASSIGNED")

        grant = UserRoleGrant(
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            expires_at=to_utc_optional(expires_at),
        )
        self.db.add(grant)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise ConflictError(
                "User already has this role", code="ROLE_ALREADY_ASSIGNED"
            ) from exc
        return grant

    async def create_role_permission_grant(
        self,
        role_id: UUID,
        permission_id: UUID,
        granted_by: UUID | None = None,
        expires_at: datetime | None = None,
    ) -> RolePermissionGrant:
        """
        Grant a permission to a role.

        Raises:
            NotFoundError: role absent, or permission absent or inactive
            ConflictError: a row for the pair already exists
        """
        if await self.db.get(Role, role_id) is None:
            raise NotFoundError("Role not found", code="ROLE_NOT_FOUND")

        permission = await self.db.get(Permission, permission_id)
        if permission is None or not permission.is_active:
            raise NotFoundError(
                "Permission not found or inactive", code="PERMISSION_NOT_FOUND"
            )

        if await self.role_permission_grant_exists(role_id, permission_id):
            raise ConflictError(
                "Permission already assigned to role", code="PERMISSION_ALREADY_ASSIGNED"
            )

        grant = RolePermissionGrant(
            role_id=role_id,
            permission_id=permission_id,
            granted_by=granted_by,
            expires_at=to_utc_optional(expires_at),
        )
        self.db.add(grant)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise ConflictError(
                "Permission already assigned to role", code="PERMISSION_ALREADY_ASSIGNED"
            ) from exc
        return grant

    async def revoke_user_role_grant(self, user_id: UUID, role_id: UUID) -> bool:
        """Delete the grant row. Returns False when there was none."""
        result = await self.db.execute(
            delete(UserRoleGrant).where(
                UserRoleGrant.user_id == user_id,
                UserRoleGrant.role_id == role_id,
            )
        )
        return result.rowcount > 0

    async def revoke_role_permission_grant(self, role_id: UUID, permission_id: UUID) -> bool:
        result = await self.db.execute(
            delete(RolePermissionGrant).where(
                RolePermissionGrant.role_id == role_id,
                RolePermissionGrant.permission_id == permission_id,
            )
        )
        return result.rowcount > 0

    # ============================================================
    # REFERENTIAL CLEANUP
    # ============================================================

    async def count_active_role_permission_grants(self, permission_id: UUID) -> int:
        """Rows with the active flag set, expired or not."""
        stmt = select(func.count()).select_from(RolePermissionGrant).where(
            RolePermissionGrant.permission_id == permission_id,
            RolePermissionGrant.is_active.is_(True),
        )
        return await self.db.scalar(stmt) or 0

    async def count_active_user_role_grants(self, role_id: UUID) -> int:
        stmt = select(func.count()).select_from(UserRoleGrant).where(
            UserRoleGrant.role_id == role_id,
            UserRoleGrant.is_active.is_(True),
        )
        return await self.db.scalar(stmt) or 0

    async def delete_grants_for_user(self, user_id: UUID) -> int:
        """Remove the user's role grants and detach what they granted."""
        result = await self.db.execute(
            delete(UserRoleGrant).where(UserRoleGrant.user_id == user_id)
        )
        await self.db.execute(
            update(UserRoleGrant)
            .where(UserRoleGrant.assigned_by == user_id)
            .values(assigned_by=None)
        )
        await self.db.execute(
            update(RolePermissionGrant)
            .where(RolePermissionGrant.granted_by == user_id)
            .values(granted_by=None)
        )
        return result.rowcount

    async def delete_grants_for_role(self, role_id: UUID) -> int:
        ur = await self.db.execute(delete(UserRoleGrant).where(UserRoleGrant.role_id == role_id))
        rp = await self.db.execute(
            delete(RolePermissionGrant).where(RolePermissionGrant.role_id == role_id)
        )
        return ur.rowcount + rp.rowcount

    async def delete_grants_for_permission(self, permission_id: UUID) -> int:
        result = await self.db.execute(
            delete(RolePermissionGrant).where(RolePermissionGrant.permission_id == permission_id)
        )
        return result.rowcount

    # ============================================================
    # ADMIN LISTINGS
    # ============================================================

    async def list_user_role_grants(
        self, user_id: UUID, include_inactive: bool = False
    ) -> list[tuple[UserRoleGrant, Role]]:
        stmt = (
            select(UserRoleGrant, Role)
            .join(Role, Role.id == UserRoleGrant.role_id)
            .where(UserRoleGrant.user_id == user_id)
            .order_by(UserRoleGrant.assigned_at.desc())
        )
        if not include_inactive:
            stmt = stmt.where(UserRoleGrant.is_active.is_(True), Role.is_active.is_(True))
        result = await self.db.execute(stmt)
        return [(grant, role) for grant, role in result.all()]

    async def list_role_permission_grants(
        self, role_id: UUID, include_inactive: bool = False
    ) -> list[tuple[RolePermissionGrant, Permission]]:
        stmt = (
            select(RolePermissionGrant, Permission)
            .join(Permission, Permission.id == RolePermissionGrant.permission_id)
            .where(RolePermissionGrant.role_id == role_id)
            .order_by(Permission.resource, Permission.action)
        )
        if not include_inactive:
            stmt = stmt.where(
                RolePermissionGrant.is_active.is_(True), Permission.is_active.is_(True)
            )
        result = await self.db.execute(stmt)
        return [(grant, permission) for grant, permission in result.all()]

    async def list_role_holders(self, role_id: UUID) -> list[tuple[UserRoleGrant, User]]:
        stmt = (
            select(UserRoleGrant, User)
            .join(User, User.id == UserRoleGrant.user_id)
            .where(
                UserRoleGrant.role_id == role_id,
                UserRoleGrant.is_active.is_(True),
                User.is_active.is_(True),
            )
            .order_by(UserRoleGrant.assigned_at.desc())
        )
        result = await self.db.execute(stmt)
        return [(grant, user) for grant, user in result.all()]

    async def list_permission_holders(
        self, permission_id: UUID
    ) -> list[tuple[RolePermissionGrant, Role]]:
        stmt = (
            select(RolePermissionGrant, Role)
            .join(Role, Role.id == RolePermissionGrant.role_id)
            .where(
                RolePermissionGrant.permission_id == permission_id,
                RolePermissionGrant.is_active.is_(True),
                Role.is_active.is_(True),
            )
            .order_by(Role.name)
        )
        result = await self.db.execute(stmt)
        return [(grant, role) for grant, role in result.all()]

    async def count_grants_for_roles(
        self, role_ids: Sequence[UUID]
    ) -> tuple[dict[UUID, int], dict[UUID, int]]:
        """Active permission and user grant counts per role, batched."""
        if not role_ids:
            return {}, {}

        perm_stmt = (
            select(RolePermissionGrant.role_id, func.count())
            .where(
                RolePermissionGrant.role_id.in_(list(role_ids)),
                RolePermissionGrant.is_active.is_(True),
            )
            .group_by(RolePermissionGrant.role_id)
        )
        user_stmt = (
            select(UserRoleGrant.role_id, func.count())
            .where(
                UserRoleGrant.role_id.in_(list(role_ids)),
                UserRoleGrant.is_active.is_(True),
            )
            .group_by(UserRoleGrant.role_id)
        )
        perms = {rid: n for rid, n in (await self.db.execute(perm_stmt)).all()}
        users = {rid: n for rid, n in (await self.db.execute(user_stmt)).all()}
        return perms, users

    async def count_roles_for_permissions(
        self, permission_ids: Sequence[UUID]
    ) -> dict[UUID, int]:
        if not permission_ids:
            return {}
        stmt = (
            select(RolePermissionGrant.permission_id, func.count())
            .where(
                RolePermissionGrant.permission_id.in_(list(permission_ids)),
                RolePermissionGrant.is_active.is_(True),
            )
            .group_by(RolePermissionGrant.permission_id)
        )
        return {pid: n for pid, n in (await self.db.execute(stmt)).all()}

"""
Role service.

Role definitions and the role side of permission grants. Any change here
can alter what many users hold, so mutations drop every cached snapshot.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.core.authz.interfaces import AuthenticatedIdentity, RequestOrigin
from rbac_admin.core.authz.resolver import AuthorizationResolver
from rbac_admin.core.exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    ProtectedEntityError,
)
from rbac_admin.models.rbac import Permission, Role, RolePermissionGrant
from rbac_admin.repositories import RoleRepository
from rbac_admin.repositories.grants import GrantStore
from rbac_admin.schemas.audit_log import AuditAction, ResourceType
from rbac_admin.schemas.role import RoleCreate, RoleUpdate
from rbac_admin.services.audit import AuditRecorder
from rbac_admin.services.user import ensure_future_expiry, status_filter
from rbac_admin.utils.pagination import OffsetPage, Paginator
from rbac_admin.utils.timezone import to_utc, to_utc_optional

logger = structlog.get_logger()


class RoleService:
    """Role management service."""

    def __init__(self, db: AsyncSession, resolver: AuthorizationResolver):
        self.db = db
        self.resolver = resolver
        self.roles = RoleRepository(db)
        self.grants = GrantStore(db)
        self.audit = AuditRecorder(db)

    async def get(self, role_id: UUID) -> Role:
        role = await self.roles.get_by_id(role_id)
        if role is None:
            raise NotFoundError("Role not found", code="ROLE_NOT_FOUND")
        return role

    async def list_roles(
        self,
        page: int = 1,
        per_page: int = 20,
        search: str | None = None,
        status: str = "all",
    ) -> tuple[OffsetPage, dict[UUID, int], dict[UUID, int]]:
        """Page of roles with permission and user counts (batched)."""
        stmt = select(Role)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(Role.name.ilike(pattern), Role.description.ilike(pattern)))
        clause = status_filter(Role.is_active, status)
        if clause is not None:
            stmt = stmt.where(clause)
        stmt = stmt.order_by(Role.name)

        result = await Paginator(self.db).paginate_offset(stmt, page=page, per_page=per_page)
        perm_counts, user_counts = await self.grants.count_grants_for_roles(
            [r.id for r in result.items]
        )
        return result, perm_counts, user_counts

    async def get_detail(self, role_id: UUID) -> dict[str, Any]:
        """Role with its permission grants and current holders."""
        role = await self.get(role_id)
        permissions = await self.list_permissions(role_id, include_inactive=True)
        holders = await self.grants.list_role_holders(role_id)
        return {
            "role": role,
            "permissions": permissions,
            "users": [
                {
                    "user_id": user.id,
                    "username": user.username,
                    "email": user.email,
                    "assigned_at": to_utc(grant.assigned_at),
                    "expires_at": to_utc_optional(grant.expires_at),
                }
                for grant, user in holders
            ],
        }

    async def _ensure_name_free(self, name: str, exclude_id: UUID | None = None) -> None:
        stmt = select(Role.id).where(Role.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Role.id != exclude_id)
        if await self.db.scalar(stmt) is not None:
            raise ConflictError("Role name already exists", code="ROLE_EXISTS")

    async def create(
        self,
        data: RoleCreate,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> Role:
        """
        Create a role, optionally granting it an initial set of permissions.

        Raises:
            ConflictError: ROLE_EXISTS
            NotFoundError: PERMISSION_NOT_FOUND for an unknown initial permission
        """
        await self._ensure_name_free(data.name)

        role = Role(name=data.name, description=data.description)
        self.db.add(role)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise ConflictError("Role name already exists", code="ROLE_EXISTS") from exc

        for permission_id in dict.fromkeys(data.permission_ids):
            await self.grants.create_role_permission_grant(
                role.id, permission_id, granted_by=actor.user_id
            )

        await self.audit.record(
            action=AuditAction.ROLE_CREATED,
            resource_type=ResourceType.ROLE,
            resource_id=role.id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={
                "name": role.name,
                "permission_ids": [str(p) for p in dict.fromkeys(data.permission_ids)],
            },
            origin=origin,
        )
        logger.info("Role created", role=role.name)
        return role

    async def update(
        self,
        role_id: UUID,
        data: RoleUpdate,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> Role:
        """
        Rename or redescribe a role.

        System roles keep their names since admin guards refer to them.
        """
        role = await self.get(role_id)
        update_data = data.model_dump(exclude_unset=True)
        if not update_data:
            raise InvalidInputError("No fields to update", code="NO_UPDATE_FIELDS")

        new_name = update_data.get("name")
        if new_name is not None and new_name != role.name:
            if role.is_protected:
                raise ProtectedEntityError(
                    "Cannot rename system role", code="SYSTEM_ROLE_PROTECTED"
                )
            await self._ensure_name_free(new_name, exclude_id=role.id)

        changes = {
            field: {"old": getattr(role, field), "new": value}
            for field, value in update_data.items()
            if getattr(role, field) != value
        }
        await self.roles.update(role, **update_data)

        await self.audit.record(
            action=AuditAction.ROLE_UPDATED,
            resource_type=ResourceType.ROLE,
            resource_id=role.id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"changes": changes},
            origin=origin,
        )
        if "name" in changes:
            await self.resolver.invalidate_all()
        return role

    async def set_active(
        self,
        role_id: UUID,
        active: bool,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> Role:
        """
        Activate or deactivate a role.

        An inactive role confers nothing, though its grants stay in place.

        Raises:
            ProtectedEntityError: SYSTEM_ROLE_PROTECTED on deactivating a system role
        """
        role = await self.get(role_id)
        if not active and role.is_protected:
            logger.warning("Protected role deactivation refused", role=role.name)
            raise ProtectedEntityError(
                "Cannot deactivate system role", code="SYSTEM_ROLE_PROTECTED"
            )

        role.is_active = active
        await self.db.flush()

        await self.audit.record(
            action=AuditAction.ROLE_ACTIVATED if active else AuditAction.ROLE_DEACTIVATED,
            resource_type=ResourceType.ROLE,
            resource_id=role.id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"name": role.name},
            origin=origin,
        )
        await self.resolver.invalidate_all()
        return role

    async def delete(
        self,
        role_id: UUID,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> None:
        """
        Delete a role and its permission grants.

        Raises:
            ProtectedEntityError: SYSTEM_ROLE_PROTECTED, or ROLE_IN_USE while
                any user grant of it is still active
        """
        role = await self.get(role_id)
        if role.is_protected:
            logger.warning("Protected role deletion refused", role=role.name)
            raise ProtectedEntityError("Cannot delete system role", code="SYSTEM_ROLE_PROTECTED")

        holders = await self.grants.count_active_user_role_grants(role_id)
        if holders:
            raise ProtectedEntityError(
                f"Role is assigned to {holders} user(s)",
                code="ROLE_IN_USE",
                details={"user_count": holders},
            )

        removed = await self.grants.delete_grants_for_role(role_id)
        name = role.name
        await self.roles.delete(role_id)

        await self.audit.record(
            action=AuditAction.ROLE_DELETED,
            resource_type=ResourceType.ROLE,
            resource_id=role_id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"name": name, "grants_removed": removed},
            origin=origin,
        )
        await self.resolver.invalidate_all()
        logger.info("Role deleted", role=name)

    # ============================================================
    # PERMISSION GRANTS
    # ============================================================

    async def list_permissions(
        self, role_id: UUID, include_inactive: bool = False
    ) -> list[dict[str, Any]]:
        await self.get(role_id)
        rows = await self.grants.list_role_permission_grants(
            role_id, include_inactive=include_inactive
        )
        return [
            {
                "grant_id": grant.id,
                "permission_id": permission.id,
                "name": permission.name,
                "resource": permission.resource,
                "action": permission.action,
                "description": permission.description,
                "granted_by": grant.granted_by,
                "granted_at": to_utc(grant.granted_at),
                "expires_at": to_utc_optional(grant.expires_at),
                "is_active": grant.is_active and permission.is_active,
            }
            for grant, permission in rows
        ]

    async def grant_permission(
        self,
        role_id: UUID,
        permission_id: UUID,
        actor: AuthenticatedIdentity,
        expires_at: datetime | None = None,
        origin: RequestOrigin | None = None,
    ) -> RolePermissionGrant:
        """
        Raises:
            InvalidInputError: EXPIRY_IN_PAST
            NotFoundError: ROLE_NOT_FOUND, PERMISSION_NOT_FOUND
            ConflictError: PERMISSION_ALREADY_ASSIGNED
        """
        expires_at = ensure_future_expiry(expires_at, self.resolver.clock())
        grant = await self.grants.create_role_permission_grant(
            role_id, permission_id, granted_by=actor.user_id, expires_at=expires_at
        )
        permission = await self.db.get(Permission, permission_id)

        await self.audit.record(
            action=AuditAction.PERMISSION_ASSIGNED,
            resource_type=ResourceType.ROLE,
            resource_id=role_id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={
                "permission_id": str(permission_id),
                "permission_name": permission.name,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
            origin=origin,
        )
        await self.resolver.invalidate_all()
        return grant

    async def revoke_permission(
        self,
        role_id: UUID,
        permission_id: UUID,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> None:
        """
        Raises:
            NotFoundError: ASSIGNMENT_NOT_FOUND
        """
        if not await self.grants.revoke_role_permission_grant(role_id, permission_id):
            raise NotFoundError("Permission assignment not found", code="ASSIGNMENT_NOT_FOUND")

        permission = await self.db.get(Permission, permission_id)
        await self.audit.record(
            action=AuditAction.PERMISSION_REMOVED,
            resource_type=ResourceType.ROLE,
            resource_id=role_id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={
                "permission_id": str(permission_id),
                "permission_name": permission.name if permission else None,
            },
            origin=origin,
        )
        await self.resolver.invalidate_all()

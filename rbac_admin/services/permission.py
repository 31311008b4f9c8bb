"""
Permission service.

Manages the permission catalogue. Permissions are ``resource:action``
pairs; both the name and the pair are unique.
"""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.core.authz.interfaces import AuthenticatedIdentity, RequestOrigin
from rbac_admin.core.authz.resolver import AuthorizationResolver
from rbac_admin.core.exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    ProtectedEntityError,
    RBACError,
)
from rbac_admin.models.rbac import Permission
from rbac_admin.repositories import PermissionRepository
from rbac_admin.repositories.grants import GrantStore
from rbac_admin.schemas.audit_log import AuditAction, ResourceType
from rbac_admin.schemas.permission import PermissionCreate, PermissionUpdate
from rbac_admin.services.audit import AuditRecorder
from rbac_admin.services.user import status_filter
from rbac_admin.utils.pagination import OffsetPage, Paginator
from rbac_admin.utils.timezone import to_utc, to_utc_optional

logger = structlog.get_logger()


class PermissionService:
    """Permission management service."""

    def __init__(self, db: AsyncSession, resolver: AuthorizationResolver):
        self.db = db
        self.resolver = resolver
        self.permissions = PermissionRepository(db)
        self.grants = GrantStore(db)
        self.audit = AuditRecorder(db)

    async def get(self, permission_id: UUID) -> Permission:
        permission = await self.permissions.get_by_id(permission_id)
        if permission is None:
            raise NotFoundError("Permission not found", code="PERMISSION_NOT_FOUND")
        return permission

    async def list_permissions(
        self,
        page: int = 1,
        per_page: int = 20,
        search: str | None = None,
        resource: str | None = None,
        action: str | None = None,
        status: str = "all",
    ) -> tuple[OffsetPage, dict[UUID, int]]:
        """Page of permissions with role counts (batched)."""
        stmt = select(Permission)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(Permission.name.ilike(pattern), Permission.description.ilike(pattern))
            )
        if resource:
            stmt = stmt.where(Permission.resource == resource)
        if action:
            stmt = stmt.where(Permission.action == action)
        clause = status_filter(Permission.is_active, status)
        if clause is not None:
            stmt = stmt.where(clause)
        stmt = stmt.order_by(Permission.resource, Permission.action)

        result = await Paginator(self.db).paginate_offset(stmt, page=page, per_page=per_page)
        role_counts = await self.grants.count_roles_for_permissions(
            [p.id for p in result.items]
        )
        return result, role_counts

    async def get_detail(self, permission_id: UUID) -> dict[str, Any]:
        """Permission with the active roles holding it."""
        permission = await self.get(permission_id)
        holders = await self.grants.list_permission_holders(permission_id)
        return {
            "permission": permission,
            "roles": [
                {
                    "role_id": role.id,
                    "role_name": role.name,
                    "granted_at": to_utc(grant.granted_at),
                    "expires_at": to_utc_optional(grant.expires_at),
                }
                for grant, role in holders
            ],
        }

    async def _ensure_unique(
        self,
        name: str | None = None,
        resource: str | None = None,
        action: str | None = None,
        exclude_id: UUID | None = None,
    ) -> None:
        conditions = []
        if name is not None:
            conditions.append(Permission.name == name)
        if resource is not None and action is not None:
            conditions.append(
                (Permission.resource == resource) & (Permission.action == action)
            )
        if not conditions:
            return

        stmt = select(Permission.id).where(or_(*conditions))
        if exclude_id is not None:
            stmt = stmt.where(Permission.id != exclude_id)
        if await self.db.scalar(stmt.limit(1)) is not None:
            raise ConflictError(
                "Permission with this name or resource/action already exists",
                code="PERMISSION_EXISTS",
            )

    async def _insert(self, data: PermissionCreate) -> Permission:
        name = data.name or f"{data.resource}:{data.action}"
        await self._ensure_unique(name=name, resource=data.resource, action=data.action)

        permission = Permission(
            name=name,
            resource=data.resource,
            action=data.action,
            description=data.description,
        )
        self.db.add(permission)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise ConflictError(
                "Permission with this name or resource/action already exists",
                code="PERMISSION_EXISTS",
            ) from exc
        return permission

    async def create(
        self,
        data: PermissionCreate,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> Permission:
        """
        Raises:
            ConflictError: PERMISSION_EXISTS
        """
        permission = await self._insert(data)

        await self.audit.record(
            action=AuditAction.PERMISSION_CREATED,
            resource_type=ResourceType.PERMISSION,
            resource_id=permission.id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"name": permission.name, "key": permission.key},
            origin=origin,
        )
        return permission

    async def bulk_create(
        self,
        items: list[PermissionCreate],
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> tuple[list[Permission], list[dict[str, Any]]]:
        """
        Create many permissions; a failing item is reported, never fatal.

        Uniqueness is checked before each insert so a clash never reaches
        the database and the rest of the batch still goes through.
        """
        created: list[Permission] = []
        errors: list[dict[str, Any]] = []

        for index, item in enumerate(items):
            try:
                created.append(await self._insert(item))
            except RBACError as exc:
                errors.append(
                    {
                        "index": index,
                        "resource": item.resource,
                        "action": item.action,
                        "code": exc.code,
                        "detail": exc.message,
                    }
                )

        await self.audit.record(
            action=AuditAction.PERMISSION_CREATED,
            resource_type=ResourceType.PERMISSION,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={
                "bulk": True,
                "created": [p.name for p in created],
                "failed": len(errors),
            },
            origin=origin,
            summary=f"{actor.email}: bulk created {len(created)} permission(s)",
        )
        if errors:
            logger.warning("Bulk permission create had failures", failed=len(errors))
        return created, errors

    async def update(
        self,
        permission_id: UUID,
        data: PermissionUpdate,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> Permission:
        permission = await self.get(permission_id)
        update_data = data.model_dump(exclude_unset=True)
        if not update_data:
            raise InvalidInputError("No fields to update", code="NO_UPDATE_FIELDS")

        new_name = update_data.get("name")
        if new_name is not None and new_name != permission.name:
            if permission.is_protected:
                raise ProtectedEntityError(
                    "Cannot rename system permission", code="SYSTEM_PERMISSION_PROTECTED"
                )
            await self._ensure_unique(name=new_name, exclude_id=permission.id)

        changes = {
            field: {"old": getattr(permission, field), "new": value}
            for field, value in update_data.items()
            if getattr(permission, field) != value
        }
        await self.permissions.update(permission, **update_data)

        await self.audit.record(
            action=AuditAction.PERMISSION_UPDATED,
            resource_type=ResourceType.PERMISSION,
            resource_id=permission.id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"changes": changes},
            origin=origin,
        )
        if "name" in changes:
            await self.resolver.invalidate_all()
        return permission

    async def set_active(
        self,
        permission_id: UUID,
        active: bool,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> Permission:
        """
        Raises:
            ProtectedEntityError: SYSTEM_PERMISSION_PROTECTED on deactivating
                a system permission
        """
        permission = await self.get(permission_id)
        if not active and permission.is_protected:
            logger.warning("Protected permission deactivation refused", permission=permission.key)
            raise ProtectedEntityError(
                "Cannot deactivate system permission", code="SYSTEM_PERMISSION_PROTECTED"
            )

        permission.is_active = active
        await self.db.flush()

        await self.audit.record(
            action=(
                AuditAction.PERMISSION_ACTIVATED if active
                else AuditAction.PERMISSION_DEACTIVATED
            ),
            resource_type=ResourceType.PERMISSION,
            resource_id=permission.id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"name": permission.name},
            origin=origin,
        )
        await self.resolver.invalidate_all()
        return permission

    async def delete(
        self,
        permission_id: UUID,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> None:
        """
        Delete a permission no active grant refers to.

        Raises:
            ProtectedEntityError: SYSTEM_PERMISSION_PROTECTED, or
                PERMISSION_IN_USE while an active role grant references it
        """
        permission = await self.get(permission_id)
        if permission.is_protected:
            logger.warning("Protected permission deletion refused", permission=permission.key)
            raise ProtectedEntityError(
                "Cannot delete system permission", code="SYSTEM_PERMISSION_PROTECTED"
            )

        in_use = await self.grants.count_active_role_permission_grants(permission_id)
        if in_use:
            raise ProtectedEntityError(
                f"Permission is assigned to {in_use} role(s)",
                code="PERMISSION_IN_USE",
                details={"role_count": in_use},
            )

        removed = await self.grants.delete_grants_for_permission(permission_id)
        name = permission.name
        await self.permissions.delete(permission_id)

        await self.audit.record(
            action=AuditAction.PERMISSION_DELETED,
            resource_type=ResourceType.PERMISSION,
            resource_id=permission_id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"name": name, "grants_removed": removed},
            origin=origin,
        )
        await self.resolver.invalidate_all()
        logger.info("Permission deleted", permission=name)

    # ============================================================
    # CATALOGUE SUMMARIES
    # ============================================================

    async def list_resources(self) -> list[tuple[str, int]]:
        count = func.count(Permission.id)
        stmt = (
            select(Permission.resource, count)
            .where(Permission.is_active.is_(True))
            .group_by(Permission.resource)
            .order_by(Permission.resource)
        )
        return [(resource, n) for resource, n in (await self.db.execute(stmt)).all()]

    async def list_actions(self) -> list[tuple[str, int]]:
        count = func.count(Permission.id)
        stmt = (
            select(Permission.action, count)
            .where(Permission.is_active.is_(True))
            .group_by(Permission.action)
            .order_by(Permission.action)
        )
        return [(action, n) for action, n in (await self.db.execute(stmt)).all()]

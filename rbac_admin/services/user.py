"""
User service.

Account administration plus the user side of role grants. Every mutation
is audited and drops the user's cached authorization snapshot.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.core.authz.interfaces import (
    AuthenticatedIdentity,
    EffectivePermission,
    EffectiveRole,
    RequestOrigin,
)
from rbac_admin.core.authz.resolver import AuthorizationResolver
from rbac_admin.core.exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
)
from rbac_admin.models.rbac import Role, UserRoleGrant
from rbac_admin.models.user import User
from rbac_admin.repositories import UserRepository
from rbac_admin.repositories.grants import GrantStore
from rbac_admin.schemas.audit_log import AuditAction, ResourceType
from rbac_admin.schemas.user import UserUpdate
from rbac_admin.services.audit import AuditRecorder
from rbac_admin.utils.pagination import OffsetPage, Paginator
from rbac_admin.utils.timezone import to_utc, to_utc_optional

logger = structlog.get_logger()


def ensure_future_expiry(expires_at: datetime | None, now: datetime) -> datetime | None:
    """
    Reject an expiry that has already passed.

    Raises:
        InvalidInputError: EXPIRY_IN_PAST
    """
    if expires_at is None:
        return None
    expires_at = to_utc(expires_at)
    if expires_at <= now:
        raise InvalidInputError("Expiry must be in the future", code="EXPIRY_IN_PAST")
    return expires_at


def status_filter(column, status: str):
    """``active`` / ``inactive`` / ``all`` to a where clause, or None."""
    if status == "active":
        return column.is_(True)
    if status == "inactive":
        return column.is_(False)
    return None


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    return value


class UserService:
    """User management service."""

    def __init__(self, db: AsyncSession, resolver: AuthorizationResolver):
        self.db = db
        self.resolver = resolver
        self.users = UserRepository(db)
        self.grants = GrantStore(db)
        self.audit = AuditRecorder(db)

    async def get(self, user_id: UUID) -> User:
        """Get user by ID or raise USER_NOT_FOUND."""
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return user

    async def list_users(
        self,
        page: int = 1,
        per_page: int = 20,
        search: str | None = None,
        status: str = "all",
        role: str | None = None,
    ) -> tuple[OffsetPage, dict[UUID, list[EffectiveRole]]]:
        """
        List users with their current roles.

        Roles for the whole page are loaded in one query.
        """
        now = self.resolver.clock()
        stmt = select(User)

        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    User.username.ilike(pattern),
                    User.email.ilike(pattern),
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                )
            )

        clause = status_filter(User.is_active, status)
        if clause is not None:
            stmt = stmt.where(clause)

        if role:
            holds_role = (
                select(UserRoleGrant.id)
                .join(Role, Role.id == UserRoleGrant.role_id)
                .where(
                    UserRoleGrant.user_id == User.id,
                    UserRoleGrant.is_active.is_(True),
                    or_(UserRoleGrant.expires_at.is_(None), UserRoleGrant.expires_at > now),
                    Role.is_active.is_(True),
                    Role.name == role,
                )
            )
            stmt = stmt.where(exists(holds_role))

        stmt = stmt.order_by(User.created_at.desc(), User.id)
        result = await Paginator(self.db).paginate_offset(stmt, page=page, per_page=per_page)

        roles = await self.grants.find_active_roles_for_users(
            [u.id for u in result.items], now
        )
        return result, roles

    async def update(
        self,
        user_id: UUID,
        data: UserUpdate,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> User:
        """
        Apply a partial update.

        Raises:
            InvalidInputError: NO_UPDATE_FIELDS
            ConflictError: USER_EXISTS when the new email is taken
        """
        user = await self.get(user_id)
        update_data = data.model_dump(exclude_unset=True)
        if not update_data:
            raise InvalidInputError("No fields to update", code="NO_UPDATE_FIELDS")

        email = update_data.get("email")
        if email and email != user.email:
            clash = await self.db.scalar(
                select(User.id).where(User.email == email, User.id != user_id)
            )
            if clash is not None:
                raise ConflictError("Email already in use", code="USER_EXISTS")

        changes = {
            field: {"old": _jsonable(getattr(user, field)), "new": _jsonable(value)}
            for field, value in update_data.items()
            if getattr(user, field) != value
        }
        await self.users.update(user, **update_data)

        await self.audit.record(
            action=AuditAction.USER_UPDATED,
            resource_type=ResourceType.USER,
            resource_id=user.id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"changes": changes},
            origin=origin,
        )
        if "is_active" in changes:
            await self.resolver.invalidate(user.id)

        return user

    async def set_active(
        self,
        user_id: UUID,
        active: bool,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> User:
        """Activate or deactivate an account. Self-action is blocked by the caller."""
        user = await self.get(user_id)
        user.is_active = active
        await self.db.flush()

        await self.audit.record(
            action=AuditAction.USER_ACTIVATED if active else AuditAction.USER_DEACTIVATED,
            resource_type=ResourceType.USER,
            resource_id=user.id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"username": user.username},
            origin=origin,
        )
        await self.resolver.invalidate(user.id)

        logger.info("User status changed", user_id=str(user.id), is_active=active)
        return user

    async def delete(
        self,
        user_id: UUID,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> None:
        """Hard delete, removing the user's role grants with it."""
        user = await self.get(user_id)
        details = {"username": user.username, "email": user.email}

        removed = await self.grants.delete_grants_for_user(user.id)
        await self.users.delete(user.id)

        await self.audit.record(
            action=AuditAction.USER_DELETED,
            resource_type=ResourceType.USER,
            resource_id=user_id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={**details, "grants_removed": removed},
            origin=origin,
        )
        await self.resolver.invalidate(user_id)

        logger.info("User deleted", user_id=str(user_id), grants_removed=removed)

    # ============================================================
    # ROLE GRANTS
    # ============================================================

    async def assign_role(
        self,
        user_id: UUID,
        role_id: UUID,
        actor: AuthenticatedIdentity,
        expires_at: datetime | None = None,
        origin: RequestOrigin | None = None,
    ) -> UserRoleGrant:
        """
        Grant a role to a user.

        Raises:
            InvalidInputError: EXPIRY_IN_PAST
            NotFoundError: USER_NOT_FOUND, ROLE_NOT_FOUND
            ConflictError: ROLE_ALREADY_ASSIGNED
        """
        expires_at = ensure_future_expiry(expires_at, self.resolver.clock())
        grant = await self.grants.create_user_role_grant(
            user_id, role_id, assigned_by=actor.user_id, expires_at=expires_at
        )
        role = await self.db.get(Role, role_id)

        await self.audit.record(
            action=AuditAction.ROLE_ASSIGNED,
            resource_type=ResourceType.USER,
            resource_id=user_id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={
                "role_id": str(role_id),
                "role_name": role.name,
                "expires_at": _jsonable(expires_at),
            },
            origin=origin,
        )
        await self.resolver.invalidate(user_id)
        return grant

    async def revoke_role(
        self,
        user_id: UUID,
        role_id: UUID,
        actor: AuthenticatedIdentity,
        origin: RequestOrigin | None = None,
    ) -> None:
        """
        Remove a role grant.

        Raises:
            NotFoundError: ASSIGNMENT_NOT_FOUND
        """
        if not await self.grants.revoke_user_role_grant(user_id, role_id):
            raise NotFoundError("Role assignment not found", code="ASSIGNMENT_NOT_FOUND")

        role = await self.db.get(Role, role_id)
        await self.audit.record(
            action=AuditAction.ROLE_REMOVED,
            resource_type=ResourceType.USER,
            resource_id=user_id,
            actor_id=actor.user_id,
            actor_email=actor.email,
            authorized_by=actor.authorized_by,
            details={"role_id": str(role_id), "role_name": role.name if role else None},
            origin=origin,
        )
        await self.resolver.invalidate(user_id)

    async def list_role_grants(self, user_id: UUID) -> list[dict[str, Any]]:
        """All role grant rows of a user, flagged when expired."""
        await self.get(user_id)
        now = self.resolver.clock()
        rows = await self.grants.list_user_role_grants(user_id, include_inactive=True)
        return [
            {
                "grant_id": grant.id,
                "role_id": role.id,
                "role_name": role.name,
                "role_description": role.description,
                "assigned_by": grant.assigned_by,
                "assigned_at": to_utc(grant.assigned_at),
                "expires_at": to_utc_optional(grant.expires_at),
                "is_active": grant.is_active and role.is_active,
                "is_expired": grant.expires_at is not None and to_utc(grant.expires_at) <= now,
            }
            for grant, role in rows
        ]

    async def effective_permissions(self, user_id: UUID) -> list[EffectivePermission]:
        await self.get(user_id)
        return await self.resolver.effective_permissions(user_id)

"""
RBAC Models - Roles, Permissions, and the grants linking them.

- Roles group permissions and are granted to users
- Permissions are resource:action pairs
- Grants carry who granted them, when, an optional expiry and an
  active flag; a grant confers nothing once expired or deactivated,
  and neither does a grant pointing at an inactive role or permission

Usage:
    editor = Role(name="editor")
    perm = Permission(name="articles:edit", resource="articles", action="edit")

    UserRoleGrant(user_id=user.id, role_id=editor.id)
    RolePermissionGrant(role_id=editor.id, permission_id=perm.id)
"""

from datetime import datetime
from uuid import UUID
from sqlalchemy import String, Boolean, ForeignKey, DateTime, UniqueConstraint, true, false
from sqlalchemy.orm import Mapped, mapped_column

from rbac_admin.utils.timezone import utc_now

from .base import Base, TimestampMixin, UUIDMixin


class Role(Base, UUIDMixin, TimestampMixin):
    """
    Role definition.

    ``is_protected`` marks system roles seeded at bootstrap; those can be
    neither deleted nor deactivated.
    """

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    is_protected: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Role {self.name}>"


class Permission(Base, UUIDMixin, TimestampMixin):
    """
    Permission definition.

    Permissions are ``resource:action`` pairs. ``name`` is unique on its own
    and the pair is unique as well.
    """

    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permission_resource_action"),
    )

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    is_protected: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )

    @property
    def key(self) -> str:
        """Get permission as 'resource:action' string."""
        return f"{self.resource}:{self.action}"

    def __repr__(self) -> str:
        return f"<Permission {self.resource}:{self.action}>"


class UserRoleGrant(Base, UUIDMixin):
    """
    User role assignment.

    At most one row per (user, role). Revoking deletes the row; an expired
    row stays in place and simply stops counting.
    """

    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role_id: Mapped[UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assigned_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<UserRoleGrant {self.user_id} -> {self.role_id}>"


class RolePermissionGrant(Base, UUIDMixin):
    """Role permission grant. At most one row per (role, permission)."""

    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    role_id: Mapped[UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_id: Mapped[UUID] = mapped_column(
        ForeignKey("permissions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    granted_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<RolePermissionGrant {self.role_id} -> {self.permission_id}>"

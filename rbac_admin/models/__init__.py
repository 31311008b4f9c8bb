"""
SQLAlchemy models.
"""

from .base import Base
from .user import User
from .rbac import Role, Permission, UserRoleGrant, RolePermissionGrant
from .audit_log import AuditRecord

__all__ = [
    "Base",
    "User",
    "Role",
    "Permission",
    "UserRoleGrant",
    "RolePermissionGrant",
    "AuditRecord",
]

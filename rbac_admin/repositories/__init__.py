"""
Repository pattern for data access.
"""

from rbac_admin.models.rbac import Permission, Role
from rbac_admin.models.user import User
from rbac_admin.repositories.base import BaseRepository
from rbac_admin.repositories.grants import GrantStore


class UserRepository(BaseRepository[User]):
    model = User


class RoleRepository(BaseRepository[Role]):
    model = Role


class PermissionRepository(BaseRepository[Permission]):
    model = Permission


__all__ = [
    "BaseRepository",
    "GrantStore",
    "UserRepository",
    "RoleRepository",
    "PermissionRepository",
]

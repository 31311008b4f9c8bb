"""
Service dependencies.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db
from rbac_admin.core.authz.dependencies import get_resolver
from rbac_admin.core.authz.resolver import AuthorizationResolver
from rbac_admin.services.audit import AuditLogQuery, AuditRecorder
from rbac_admin.services.auth import AuthService
from rbac_admin.services.permission import PermissionService
from rbac_admin.services.role import RoleService
from rbac_admin.services.user import UserService


async def get_auth_service(db: AsyncSession = Depends(get_db)) -> AuthService:
    """Get auth service instance."""
    return AuthService(db)


async def get_user_service(
    db: AsyncSession = Depends(get_db),
    resolver: AuthorizationResolver = Depends(get_resolver),
) -> UserService:
    """Get user service instance."""
    return UserService(db, resolver)


async def get_role_service(
    db: AsyncSession = Depends(get_db),
    resolver: AuthorizationResolver = Depends(get_resolver),
) -> RoleService:
    return RoleService(db, resolver)


async def get_permission_service(
    db: AsyncSession = Depends(get_db),
    resolver: AuthorizationResolver = Depends(get_resolver),
) -> PermissionService:
    return PermissionService(db, resolver)


async def get_audit_query(db: AsyncSession = Depends(get_db)) -> AuditLogQuery:
    return AuditLogQuery(db)


async def get_audit_recorder(db: AsyncSession = Depends(get_db)) -> AuditRecorder:
    return AuditRecorder(db)

"""
Bootstrap data.

Creates the system roles, the default permission catalogue and the
role->permission mapping, plus an optional first super admin taken from
``SEED_ADMIN_*`` settings. Safe to run repeatedly.

Usage:
    python -m rbac_admin.db.seed
"""

import asyncio
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.core.config import Settings, settings
from rbac_admin.core.logging import configure_logging
from rbac_admin.models.rbac import Permission, Role, RolePermissionGrant, UserRoleGrant
from rbac_admin.models.user import User
from rbac_admin.services.auth import hash_password

logger = structlog.get_logger()


SYSTEM_ROLES: dict[str, str] = {
    "super_admin": "Super Administrator with full system access",
    "admin": "Administrator with management privileges",
    "manager": "Manager with limited administrative access",
    "user": "Standard user with basic access",
    "guest": "Guest user with read-only access",
}

DEFAULT_PERMISSIONS: list[tuple[str, str, str]] = [
    ("users", "read", "Read user information"),
    ("users", "create", "Create new users"),
    ("users", "update", "Update user information"),
    ("users", "delete", "Delete users"),
    ("users", "activate", "Activate/deactivate users"),
    ("roles", "read", "Read role information"),
    ("roles", "create", "Create new roles"),
    ("roles", "update", "Update role information"),
    ("roles", "delete", "Delete roles"),
    ("roles", "assign", "Assign roles to users"),
    ("permissions", "read", "Read permission information"),
    ("permissions", "create", "Create new permissions"),
    ("permissions", "update", "Update permission information"),
    ("permissions", "delete", "Delete permissions"),
    ("permissions", "assign", "Assign permissions to roles"),
    ("audit", "read", "Read audit logs"),
    ("audit", "export", "Export audit logs"),
    ("system", "read", "Read system information"),
    ("system", "update", "Update system settings"),
    ("profile", "read", "Read own profile"),
    ("profile", "update", "Update own profile"),
    ("profile", "password", "Change own password"),
]

PROTECTED_PERMISSIONS = {"users:read", "users:update", "roles:read", "permissions:read"}

_PROFILE = ["profile:read", "profile:update", "profile:password"]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "super_admin": [f"{r}:{a}" for r, a, _ in DEFAULT_PERMISSIONS],
    "admin": [
        "users:read", "users:create", "users:update", "users:activate",
        "roles:read", "roles:create", "roles:update", "roles:assign",
        "permissions:read",
        "audit:read", "audit:export",
        "system:read",
        *_PROFILE,
    ],
    "manager": [
        "users:read", "users:update",
        "roles:read",
        "permissions:read",
        "audit:read",
        *_PROFILE,
    ],
    "user": list(_PROFILE),
    "guest": ["profile:read"],
}


@dataclass
class SeedResult:
    roles_created: list[str] = field(default_factory=list)
    permissions_created: list[str] = field(default_factory=list)
    grants_created: int = 0
    admin_created: bool = False


async def seed_roles(db: AsyncSession, result: SeedResult) -> dict[str, Role]:
    existing = {r.name: r for r in (await db.execute(select(Role))).scalars().all()}
    for name, description in SYSTEM_ROLES.items():
        role = existing.get(name)
        if role is None:
            role = Role(name=name, description=description, is_protected=True)
            db.add(role)
            existing[name] = role
            result.roles_created.append(name)
        else:
            role.is_protected = True
    await db.flush()
    return existing


async def seed_permissions(db: AsyncSession, result: SeedResult) -> dict[str, Permission]:
    existing = {
        p.key: p for p in (await db.execute(select(Permission))).scalars().all()
    }
    for resource, action, description in DEFAULT_PERMISSIONS:
        key = f"{resource}:{action}"
        permission = existing.get(key)
        if permission is None:
            permission = Permission(
                name=key,
                resource=resource,
                action=action,
                description=description,
            )
            db.add(permission)
            existing[key] = permission
            result.permissions_created.append(key)
        permission.is_protected = key in PROTECTED_PERMISSIONS
    await db.flush()
    return existing


async def seed_role_permissions(
    db: AsyncSession,
    roles: dict[str, Role],
    permissions: dict[str, Permission],
    result: SeedResult,
) -> None:
    """Add missing default grants; existing rows are left as they are."""
    rows = await db.execute(
        select(RolePermissionGrant.role_id, RolePermissionGrant.permission_id)
    )
    present = {(role_id, permission_id) for role_id, permission_id in rows.all()}

    for role_name, keys in ROLE_PERMISSIONS.items():
        role = roles[role_name]
        for key in keys:
            permission = permissions[key]
            if (role.id, permission.id) in present:
                continue
            db.add(RolePermissionGrant(role_id=role.id, permission_id=permission.id))
            present.add((role.id, permission.id))
            result.grants_created += 1
    await db.flush()


async def seed_admin(
    db: AsyncSession,
    roles: dict[str, Role],
    config: Settings,
    result: SeedResult,
) -> None:
    seed = config.seed
    if not (seed.admin_username and seed.admin_email and seed.admin_password):
        return

    user = await db.scalar(select(User).where(User.username == seed.admin_username))
    if user is None:
        user = User(
            username=seed.admin_username,
            email=seed.admin_email,
            password_hash=hash_password(seed.admin_password),
            is_verified=True,
        )
        db.add(user)
        await db.flush()
        result.admin_created = True

    role = roles["super_admin"]
    holds = await db.scalar(
        select(UserRoleGrant.id).where(
            UserRoleGrant.user_id == user.id,
            UserRoleGrant.role_id == role.id,
        )
    )
    if holds is None:
        db.add(UserRoleGrant(user_id=user.id, role_id=role.id))
        await db.flush()


async def seed(db: AsyncSession, config: Settings = settings) -> SeedResult:
    """Seed everything in one transaction. Commits on success."""
    result = SeedResult()
    roles = await seed_roles(db, result)
    permissions = await seed_permissions(db, result)
    await seed_role_permissions(db, roles, permissions, result)
    await seed_admin(db, roles, config, result)
    await db.commit()

    logger.info(
        "Seed complete",
        roles_created=result.roles_created,
        permissions_created=len(result.permissions_created),
        grants_created=result.grants_created,
        admin_created=result.admin_created,
    )
    return result


async def main() -> None:
    from rbac_admin.models.database import async_session_factory, close_db

    configure_logging(settings)
    try:
        async with async_session_factory() as session:
            await seed(session)
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())

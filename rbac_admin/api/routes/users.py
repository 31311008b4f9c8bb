"""
User management routes.
"""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from rbac_admin.api.dependencies.services import get_user_service
from rbac_admin.core.authz.dependencies import (
    AdminIdentity,
    Gate,
    Origin,
    require_permission,
    require_self_or_permission,
)
from rbac_admin.core.authz.interfaces import AuthenticatedIdentity
from rbac_admin.schemas.user import (
    AssignRoleRequest,
    EffectivePermissionResponse,
    RoleSummary,
    UserListResponse,
    UserResponse,
    UserRoleGrantResponse,
    UserUpdate,
    UserWithRolesResponse,
)
from rbac_admin.services.user import UserService
from rbac_admin.utils.pagination import OffsetParams, get_offset_params

router = APIRouter()


@router.get("", response_model=UserListResponse)
async def list_users(
    _: AdminIdentity,
    pagination: OffsetParams = Depends(get_offset_params),
    search: str | None = Query(None, min_length=1, max_length=100),
    status: Literal["active", "inactive", "all"] = Query("all"),
    role: str | None = Query(None, min_length=1, max_length=50),
    user_service: UserService = Depends(get_user_service),
):
    """List users with their current roles (admin only)."""
    page, roles = await user_service.list_users(
        page=pagination.page,
        per_page=pagination.per_page,
        search=search,
        status=status,
        role=role,
    )
    users = []
    for user in page.items:
        item = UserWithRolesResponse.model_validate(user)
        item.roles = [
            RoleSummary(id=r.id, name=r.name, expires_at=r.expires_at)
            for r in roles.get(user.id, [])
        ]
        users.append(item)

    return UserListResponse(
        users=users,
        total=page.total,
        page=page.page,
        per_page=page.per_page,
        pages=page.pages,
    )


@router.get("/{user_id}", response_model=UserWithRolesResponse)
async def get_user(
    user_id: UUID,
    _: AuthenticatedIdentity = Depends(require_self_or_permission("users", "read")),
    user_service: UserService = Depends(get_user_service),
):
    """Get user by ID. Users may always read their own record."""
    user = await user_service.get(user_id)
    roles = await user_service.resolver.effective_roles(user_id)
    item = UserWithRolesResponse.model_validate(user)
    item.roles = [RoleSummary(id=r.id, name=r.name, expires_at=r.expires_at) for r in roles]
    return item


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    data: UserUpdate,
    gate: Gate,
    origin: Origin,
    identity: AuthenticatedIdentity = Depends(require_self_or_permission("users", "update")),
    user_service: UserService = Depends(get_user_service),
):
    """
    Update a user.

    A user editing their own record may not deactivate themselves, and
    needs ``users:update`` to change verification status.
    """
    if identity.user_id == user_id:
        if data.is_active is False:
            gate.forbid_self_action(identity, user_id, "deactivate")
        if data.is_verified is not None:
            await gate.require_permission(identity, "users", "update", origin)

    user = await user_service.update(user_id, data, identity, origin=origin)
    return UserResponse.model_validate(user)


@router.patch("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: UUID,
    identity: AdminIdentity,
    gate: Gate,
    origin: Origin,
    user_service: UserService = Depends(get_user_service),
):
    gate.forbid_self_action(identity, user_id, "deactivate")
    user = await user_service.set_active(user_id, False, identity, origin=origin)
    return UserResponse.model_validate(user)


@router.patch("/{user_id}/activate", response_model=UserResponse)
async def activate_user(
    user_id: UUID,
    identity: AdminIdentity,
    origin: Origin,
    user_service: UserService = Depends(get_user_service),
):
    user = await user_service.set_active(user_id, True, identity, origin=origin)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: UUID,
    identity: AdminIdentity,
    gate: Gate,
    origin: Origin,
    user_service: UserService = Depends(get_user_service),
):
    """Hard delete a user and their role grants (admin only)."""
    gate.forbid_self_action(identity, user_id, "delete")
    await user_service.delete(user_id, identity, origin=origin)


# ============================================================
# ROLE GRANTS
# ============================================================

@router.get("/{user_id}/roles", response_model=list[UserRoleGrantResponse])
async def list_user_roles(
    user_id: UUID,
    _: AuthenticatedIdentity = Depends(require_self_or_permission("users", "read")),
    user_service: UserService = Depends(get_user_service),
):
    """Every role grant row of the user, including expired and inactive ones."""
    return await user_service.list_role_grants(user_id)


@router.post(
    "/{user_id}/roles",
    response_model=list[UserRoleGrantResponse],
    status_code=status.HTTP_201_CREATED,
)
async def assign_role(
    user_id: UUID,
    data: AssignRoleRequest,
    origin: Origin,
    identity: AuthenticatedIdentity = Depends(require_permission("users", "update")),
    user_service: UserService = Depends(get_user_service),
):
    await user_service.assign_role(
        user_id,
        data.role_id,
        identity,
        expires_at=data.expires_at,
        origin=origin,
    )
    return await user_service.list_role_grants(user_id)


@router.delete("/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role(
    user_id: UUID,
    role_id: UUID,
    origin: Origin,
    identity: AuthenticatedIdentity = Depends(require_permission("users", "update")),
    user_service: UserService = Depends(get_user_service),
):
    await user_service.revoke_role(user_id, role_id, identity, origin=origin)


@router.get("/{user_id}/permissions", response_model=list[EffectivePermissionResponse])
async def list_user_permissions(
    user_id: UUID,
    _: AuthenticatedIdentity = Depends(require_self_or_permission("users", "read")),
    user_service: UserService = Depends(get_user_service),
):
    """Effective permissions, each with the roles conferring it."""
    permissions = await user_service.effective_permissions(user_id)
    return [
        EffectivePermissionResponse(
            id=p.id,
            name=p.name,
            resource=p.resource,
            action=p.action,
            roles=list(p.role_names),
            valid_until=p.valid_until,
        )
        for p in permissions
    ]

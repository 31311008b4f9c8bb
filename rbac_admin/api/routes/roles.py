"""
Role management routes.

Reads need ``roles:read``; every mutation is restricted to admin roles.
"""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from rbac_admin.api.dependencies.services import get_role_service
from rbac_admin.core.authz.dependencies import AdminIdentity, Origin, require_permission
from rbac_admin.core.authz.interfaces import AuthenticatedIdentity
from rbac_admin.models.rbac import Role
from rbac_admin.schemas.role import (
    GrantPermissionRequest,
    RoleCreate,
    RoleDetailResponse,
    RoleListResponse,
    RolePermissionGrantResponse,
    RoleResponse,
    RoleUpdate,
)
from rbac_admin.services.role import RoleService
from rbac_admin.utils.pagination import OffsetParams, get_offset_params

router = APIRouter()

CanReadRoles = Depends(require_permission("roles", "read"))


def _role_response(role: Role, permission_count: int = 0, user_count: int = 0) -> RoleResponse:
    item = RoleResponse.model_validate(role)
    item.permission_count = permission_count
    item.user_count = user_count
    return item


@router.get("", response_model=RoleListResponse)
async def list_roles(
    _: AuthenticatedIdentity = CanReadRoles,
    pagination: OffsetParams = Depends(get_offset_params),
    search: str | None = Query(None, min_length=1, max_length=100),
    status: Literal["active", "inactive", "all"] = Query("all"),
    role_service: RoleService = Depends(get_role_service),
):
    page, perm_counts, user_counts = await role_service.list_roles(
        page=pagination.page,
        per_page=pagination.per_page,
        search=search,
        status=status,
    )
    return RoleListResponse(
        roles=[
            _role_response(r, perm_counts.get(r.id, 0), user_counts.get(r.id, 0))
            for r in page.items
        ],
        total=page.total,
        page=page.page,
        per_page=page.per_page,
        pages=page.pages,
    )


@router.get("/{role_id}", response_model=RoleDetailResponse)
async def get_role(
    role_id: UUID,
    _: AuthenticatedIdentity = CanReadRoles,
    role_service: RoleService = Depends(get_role_service),
):
    """Role with its permission grants and current holders."""
    detail = await role_service.get_detail(role_id)
    base = _role_response(
        detail["role"],
        permission_count=sum(1 for p in detail["permissions"] if p["is_active"]),
        user_count=len(detail["users"]),
    )
    return RoleDetailResponse(
        **base.model_dump(),
        permissions=detail["permissions"],
        users=detail["users"],
    )


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreate,
    identity: AdminIdentity,
    origin: Origin,
    role_service: RoleService = Depends(get_role_service),
):
    role = await role_service.create(data, identity, origin=origin)
    return _role_response(role, permission_count=len(set(data.permission_ids)))


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: UUID,
    data: RoleUpdate,
    identity: AdminIdentity,
    origin: Origin,
    role_service: RoleService = Depends(get_role_service),
):
    role = await role_service.update(role_id, data, identity, origin=origin)
    return _role_response(role)


@router.patch("/{role_id}/activate", response_model=RoleResponse)
async def activate_role(
    role_id: UUID,
    identity: AdminIdentity,
    origin: Origin,
    role_service: RoleService = Depends(get_role_service),
):
    role = await role_service.set_active(role_id, True, identity, origin=origin)
    return _role_response(role)


@router.patch("/{role_id}/deactivate", response_model=RoleResponse)
async def deactivate_role(
    role_id: UUID,
    identity: AdminIdentity,
    origin: Origin,
    role_service: RoleService = Depends(get_role_service),
):
    """Deactivate a role. Its grants stay but confer nothing."""
    role = await role_service.set_active(role_id, False, identity, origin=origin)
    return _role_response(role)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: UUID,
    identity: AdminIdentity,
    origin: Origin,
    role_service: RoleService = Depends(get_role_service),
):
    """Delete a role no active user grant refers to."""
    await role_service.delete(role_id, identity, origin=origin)


# ============================================================
# PERMISSION GRANTS
# ============================================================

@router.get("/{role_id}/permissions", response_model=list[RolePermissionGrantResponse])
async def list_role_permissions(
    role_id: UUID,
    include_inactive: bool = Query(False),
    _: AuthenticatedIdentity = CanReadRoles,
    role_service: RoleService = Depends(get_role_service),
):
    return await role_service.list_permissions(role_id, include_inactive=include_inactive)


@router.post(
    "/{role_id}/permissions",
    response_model=list[RolePermissionGrantResponse],
    status_code=status.HTTP_201_CREATED,
)
async def grant_permission(
    role_id: UUID,
    data: GrantPermissionRequest,
    identity: AdminIdentity,
    origin: Origin,
    role_service: RoleService = Depends(get_role_service),
):
    await role_service.grant_permission(
        role_id,
        data.permission_id,
        identity,
        expires_at=data.expires_at,
        origin=origin,
    )
    return await role_service.list_permissions(role_id)


@router.delete(
    "/{role_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def revoke_permission(
    role_id: UUID,
    permission_id: UUID,
    identity: AdminIdentity,
    origin: Origin,
    role_service: RoleService = Depends(get_role_service),
):
    await role_service.revoke_permission(role_id, permission_id, identity, origin=origin)

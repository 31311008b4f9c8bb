"""
Permission catalogue routes.

Reads need ``permissions:read``; every mutation is restricted to admin roles.
"""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from rbac_admin.api.dependencies.services import get_permission_service
from rbac_admin.core.authz.dependencies import AdminIdentity, Origin, require_permission
from rbac_admin.core.authz.interfaces import AuthenticatedIdentity
from rbac_admin.models.rbac import Permission
from rbac_admin.schemas.permission import (
    ActionSummary,
    BulkPermissionCreate,
    BulkPermissionError,
    BulkPermissionResponse,
    PermissionCreate,
    PermissionDetailResponse,
    PermissionListResponse,
    PermissionResponse,
    PermissionUpdate,
    ResourceSummary,
)
from rbac_admin.services.permission import PermissionService
from rbac_admin.utils.pagination import OffsetParams, get_offset_params

router = APIRouter()

CanReadPermissions = Depends(require_permission("permissions", "read"))


def _permission_response(permission: Permission, role_count: int = 0) -> PermissionResponse:
    item = PermissionResponse.model_validate(permission)
    item.role_count = role_count
    return item


@router.get("", response_model=PermissionListResponse)
async def list_permissions(
    _: AuthenticatedIdentity = CanReadPermissions,
    pagination: OffsetParams = Depends(get_offset_params),
    search: str | None = Query(None, min_length=1, max_length=100),
    resource: str | None = Query(None, min_length=1, max_length=50),
    action: str | None = Query(None, min_length=1, max_length=50),
    status: Literal["active", "inactive", "all"] = Query("all"),
    permission_service: PermissionService = Depends(get_permission_service),
):
    page, role_counts = await permission_service.list_permissions(
        page=pagination.page,
        per_page=pagination.per_page,
        search=search,
        resource=resource,
        action=action,
        status=status,
    )
    return PermissionListResponse(
        permissions=[_permission_response(p, role_counts.get(p.id, 0)) for p in page.items],
        total=page.total,
        page=page.page,
        per_page=page.per_page,
        pages=page.pages,
    )


@router.get("/resources/list", response_model=list[ResourceSummary])
async def list_resources(
    _: AuthenticatedIdentity = CanReadPermissions,
    permission_service: PermissionService = Depends(get_permission_service),
):
    """Distinct resources among active permissions."""
    rows = await permission_service.list_resources()
    return [ResourceSummary(resource=r, permission_count=n) for r, n in rows]


@router.get("/actions/list", response_model=list[ActionSummary])
async def list_actions(
    _: AuthenticatedIdentity = CanReadPermissions,
    permission_service: PermissionService = Depends(get_permission_service),
):
    rows = await permission_service.list_actions()
    return [ActionSummary(action=a, permission_count=n) for a, n in rows]


@router.get("/{permission_id}", response_model=PermissionDetailResponse)
async def get_permission(
    permission_id: UUID,
    _: AuthenticatedIdentity = CanReadPermissions,
    permission_service: PermissionService = Depends(get_permission_service),
):
    detail = await permission_service.get_detail(permission_id)
    base = _permission_response(detail["permission"], role_count=len(detail["roles"]))
    return PermissionDetailResponse(**base.model_dump(), roles=detail["roles"])


@router.post("", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    data: PermissionCreate,
    identity: AdminIdentity,
    origin: Origin,
    permission_service: PermissionService = Depends(get_permission_service),
):
    permission = await permission_service.create(data, identity, origin=origin)
    return _permission_response(permission)


@router.post("/bulk", response_model=BulkPermissionResponse)
async def bulk_create_permissions(
    data: BulkPermissionCreate,
    identity: AdminIdentity,
    origin: Origin,
    permission_service: PermissionService = Depends(get_permission_service),
):
    """Create many permissions; failures are reported per item."""
    created, errors = await permission_service.bulk_create(
        data.permissions, identity, origin=origin
    )
    return BulkPermissionResponse(
        created=[_permission_response(p) for p in created],
        errors=[BulkPermissionError(**e) for e in errors],
    )


@router.put("/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: UUID,
    data: PermissionUpdate,
    identity: AdminIdentity,
    origin: Origin,
    permission_service: PermissionService = Depends(get_permission_service),
):
    permission = await permission_service.update(permission_id, data, identity, origin=origin)
    return _permission_response(permission)


@router.patch("/{permission_id}/activate", response_model=PermissionResponse)
async def activate_permission(
    permission_id: UUID,
    identity: AdminIdentity,
    origin: Origin,
    permission_service: PermissionService = Depends(get_permission_service),
):
    permission = await permission_service.set_active(
        permission_id, True, identity, origin=origin
    )
    return _permission_response(permission)


@router.patch("/{permission_id}/deactivate", response_model=PermissionResponse)
async def deactivate_permission(
    permission_id: UUID,
    identity: AdminIdentity,
    origin: Origin,
    permission_service: PermissionService = Depends(get_permission_service),
):
    permission = await permission_service.set_active(
        permission_id, False, identity, origin=origin
    )
    return _permission_response(permission)


@router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: UUID,
    identity: AdminIdentity,
    origin: Origin,
    permission_service: PermissionService = Depends(get_permission_service),
):
    """Delete a permission no active role grant refers to."""
    await permission_service.delete(permission_id, identity, origin=origin)

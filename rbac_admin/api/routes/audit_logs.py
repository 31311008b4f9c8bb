"""
Audit log API routes.

Admin roles see the whole log (listing, stats, export, single entries).
``audit:read`` is enough for the recent feed and per-resource history, and
for a user's own actions.
"""

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.api.dependencies.database import get_db
from rbac_admin.api.dependencies.services import get_audit_query, get_audit_recorder
from rbac_admin.core.authz.dependencies import (
    AdminIdentity,
    Gate,
    Origin,
    require_permission,
)
from rbac_admin.core.authz.interfaces import AuthenticatedIdentity
from rbac_admin.core.config import settings
from rbac_admin.core.exceptions import NotFoundError
from rbac_admin.schemas.audit_log import (
    AuditAction,
    AuditLogFilter,
    AuditLogResponse,
    AuditStatsResponse,
    ResourceType,
)
from rbac_admin.services.audit import (
    AuditLogQuery,
    AuditRecorder,
    build_audit_query,
    serialize_audit_record,
)
from rbac_admin.utils.pagination import (
    ExportFormat,
    OffsetPage,
    OffsetParams,
    create_csv_streaming_response,
    create_jsonl_streaming_response,
    get_offset_params,
    stream_query,
)
from rbac_admin.utils.timezone import utc_now

router = APIRouter()


def audit_filters(
    actor_id: UUID | None = Query(None),
    resource_type: str | None = Query(None),
    resource_id: str | None = Query(None),
    action: str | None = Query(None),
    start_date: datetime | None = Query(None, description="Inclusive, ISO 8601"),
    end_date: datetime | None = Query(None, description="Inclusive, ISO 8601"),
) -> AuditLogFilter:
    return AuditLogFilter(
        actor_id=actor_id,
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
    )


AuditReader = Annotated[AuthenticatedIdentity, Depends(require_permission("audit", "read"))]
AuditQuery = Annotated[AuditLogQuery, Depends(get_audit_query)]
Filters = Annotated[AuditLogFilter, Depends(audit_filters)]
Pagination = Annotated[OffsetParams, Depends(get_offset_params)]


def _page(page: OffsetPage) -> dict[str, Any]:
    body = page.model_dump(exclude={"items"})
    body["items"] = [AuditLogResponse.model_validate(record) for record in page.items]
    return body


@router.get("")
async def list_audit_logs(
    _: AdminIdentity,
    audit: AuditQuery,
    filters: Filters,
    pagination: Pagination,
) -> dict[str, Any]:
    """
    Filtered audit log, newest first.

    The body is a page: ``items`` plus ``total``, ``page``, ``per_page``,
    ``pages``, ``has_next`` and ``has_prev``.
    """
    return _page(await audit.list_logs(filters, page=pagination.page, per_page=pagination.per_page))


@router.get("/stats", response_model=AuditStatsResponse)
async def audit_stats(
    _: AdminIdentity,
    audit: AuditQuery,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    days: int = Query(30, ge=1, le=365, description="Window for the daily series"),
):
    return await audit.stats(start_date, end_date, daily_window_days=days)


@router.get("/export")
async def export_audit_logs(
    identity: AdminIdentity,
    origin: Origin,
    filters: Filters,
    db: Annotated[AsyncSession, Depends(get_db)],
    recorder: Annotated[AuditRecorder, Depends(get_audit_recorder)],
    format: ExportFormat = Query(ExportFormat.CSV),
) -> StreamingResponse:
    """
    Download the filtered log as CSV or JSON Lines.

    The export itself is recorded before the first row is streamed, so it
    appears in its own output.
    """
    await recorder.record(
        action=AuditAction.AUDIT_EXPORTED,
        resource_type=ResourceType.AUDIT,
        actor_id=identity.user_id,
        actor_email=identity.email,
        authorized_by=identity.authorized_by,
        details={"format": format.value, **filters.model_dump(mode="json", exclude_none=True)},
        origin=origin,
    )

    rows = stream_query(db, build_audit_query(filters))
    stem = f"audit_logs_{utc_now():%Y%m%d_%H%M%S}"
    if format == ExportFormat.CSV:
        return create_csv_streaming_response(rows, serialize_audit_record, f"{stem}.csv")
    return create_jsonl_streaming_response(rows, serialize_audit_record, f"{stem}.jsonl")


@router.get("/recent", response_model=list[AuditLogResponse])
async def recent_audit_logs(
    _: AuditReader,
    audit: AuditQuery,
    limit: int = Query(10, ge=1, le=100),
):
    return await audit.recent(limit)


@router.get("/resource/{resource_type}/{resource_id}")
async def resource_audit_logs(
    resource_type: str,
    resource_id: str,
    _: AuditReader,
    audit: AuditQuery,
    pagination: Pagination,
) -> dict[str, Any]:
    """History of one resource."""
    filters = AuditLogFilter(resource_type=resource_type, resource_id=resource_id)
    return _page(await audit.list_logs(filters, page=pagination.page, per_page=pagination.per_page))


@router.get("/user/{user_id}")
async def user_audit_logs(
    user_id: UUID,
    identity: AuditReader,
    gate: Gate,
    origin: Origin,
    audit: AuditQuery,
    pagination: Pagination,
) -> dict[str, Any]:
    """Actions performed by one user. Other users' records need an admin role."""
    if user_id != identity.user_id:
        await gate.require_any_role(identity, settings.auth.admin_roles, origin)

    filters = AuditLogFilter(actor_id=user_id)
    return _page(await audit.list_logs(filters, page=pagination.page, per_page=pagination.per_page))


@router.get("/{log_id}", response_model=AuditLogResponse)
async def get_audit_log(log_id: UUID, _: AdminIdentity, audit: AuditQuery):
    log = await audit.get(log_id)
    if log is None:
        raise NotFoundError("Audit log not found", code="AUDIT_LOG_NOT_FOUND")
    return log

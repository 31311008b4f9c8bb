"""Audit services: write-once recording and the admin read side."""

from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.core.authz.interfaces import GrantMatch, RequestOrigin
from rbac_admin.models.audit_log import AuditRecord
from rbac_admin.models.user import User
from rbac_admin.schemas.audit_log import (
    ActorActivity,
    AuditAction,
    AuditLogFilter,
    AuditStatsResponse,
    CountByKey,
)
from rbac_admin.utils.pagination import OffsetPage, Paginator
from rbac_admin.utils.timezone import to_utc, to_utc_optional, utc_now

logger = structlog.get_logger()


class AuditRecorder:
    """
    Append-only audit writer.

    ``record`` commits immediately so an entry survives the rollback of the
    request that produced it (denials end the request with an error).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: Any = None,
        actor_id: Optional[UUID] = None,
        actor_email: Optional[str] = None,
        details: Optional[dict] = None,
        origin: Optional[RequestOrigin] = None,
        summary: Optional[str] = None,
        authorized_by: Optional[GrantMatch] = None,
    ) -> AuditRecord:
        """
        Create an audit log entry.

        Args:
            action: The action performed (use AuditAction constants)
            resource_type: Type of resource affected (e.g., "user", "role")
            resource_id: ID of the affected resource, if any
            actor_id: Who acted; None for system actions
            actor_email: Email of the actor (denormalized)
            details: JSON-serializable context
            origin: Caller address, user agent and request id
            summary: Human-readable summary
            authorized_by: Grant chain that allowed the action, stored under
                ``details["authorized_by"]``
        """
        origin = origin or RequestOrigin()
        if authorized_by is not None:
            details = {**(details or {}), "authorized_by": authorized_by.to_dict()}
        entry = AuditRecord(
            actor_id=actor_id,
            actor_email=actor_email,
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            summary=summary or self._generate_summary(action, resource_type, actor_email),
            request_id=origin.request_id,
        )

        self.db.add(entry)
        await self.db.commit()

        logger.info(
            "Audit log created",
            action=action,
            resource_type=resource_type,
            resource_id=entry.resource_id,
            actor_id=str(actor_id) if actor_id else None,
        )

        return entry

    def _generate_summary(
        self,
        action: str,
        resource_type: str,
        actor_email: Optional[str],
    ) -> str:
        actor = actor_email or "System"
        if action in (AuditAction.LOGIN, AuditAction.LOGOUT, AuditAction.LOGIN_FAILED):
            verb = {
                AuditAction.LOGIN: "logged in",
                AuditAction.LOGOUT: "logged out",
                AuditAction.LOGIN_FAILED: "failed to log in",
            }[action]
            return f"{actor} {verb}"
        if action in (AuditAction.PERMISSION_DENIED, AuditAction.ROLE_DENIED):
            return f"{actor} was denied access to {resource_type}"
        return f"{actor}: {action.replace('_', ' ')} ({resource_type})"


def build_audit_query(filters: AuditLogFilter) -> Select:
    """Base query with filters applied, newest first."""
    query = select(AuditRecord)

    if filters.actor_id:
        query = query.where(AuditRecord.actor_id == filters.actor_id)
    if filters.resource_type:
        query = query.where(AuditRecord.resource_type == filters.resource_type)
    if filters.resource_id:
        query = query.where(AuditRecord.resource_id == filters.resource_id)
    if filters.action:
        query = query.where(AuditRecord.action == filters.action)
    if filters.start_date:
        query = query.where(AuditRecord.created_at >= to_utc(filters.start_date))
    if filters.end_date:
        query = query.where(AuditRecord.created_at <= to_utc(filters.end_date))

    return query.order_by(AuditRecord.created_at.desc(), AuditRecord.id)


class AuditLogQuery:
    """Read side of the audit log, used only by the admin API."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, log_id: UUID) -> Optional[AuditRecord]:
        return await self.db.get(AuditRecord, log_id)

    async def list_logs(
        self,
        filters: AuditLogFilter,
        page: int = 1,
        per_page: int = 20,
    ) -> OffsetPage:
        paginator = Paginator(self.db)
        return await paginator.paginate_offset(
            build_audit_query(filters), page=page, per_page=per_page
        )

    async def recent(self, limit: int = 10) -> list[AuditRecord]:
        query = build_audit_query(AuditLogFilter()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        daily_window_days: int = 30,
    ) -> AuditStatsResponse:
        """Counts by action, resource type, actor and day."""
        conditions = []
        if start_date:
            conditions.append(AuditRecord.created_at >= to_utc(start_date))
        if end_date:
            conditions.append(AuditRecord.created_at <= to_utc(end_date))

        totals = (
            await self.db.execute(
                select(
                    func.count(AuditRecord.id),
                    func.count(func.distinct(AuditRecord.actor_id)),
                    func.count(func.distinct(AuditRecord.resource_type)),
                ).where(*conditions)
            )
        ).one()

        count = func.count(AuditRecord.id).label("count")
        by_action = await self.db.execute(
            select(AuditRecord.action, count)
            .where(*conditions)
            .group_by(AuditRecord.action)
            .order_by(count.desc())
            .limit(20)
        )
        by_resource = await self.db.execute(
            select(AuditRecord.resource_type, count)
            .where(*conditions)
            .group_by(AuditRecord.resource_type)
            .order_by(count.desc())
        )
        by_actor = await self.db.execute(
            select(
                AuditRecord.actor_id,
                User.username,
                count,
                func.max(AuditRecord.created_at),
            )
            .outerjoin(User, User.id == AuditRecord.actor_id)
            .where(*conditions)
            .group_by(AuditRecord.actor_id, User.username)
            .order_by(count.desc())
            .limit(20)
        )

        day = func.date(AuditRecord.created_at).label("day")
        since = utc_now() - timedelta(days=daily_window_days)
        daily = await self.db.execute(
            select(day, count)
            .where(*conditions, AuditRecord.created_at >= since)
            .group_by(day)
            .order_by(day.desc())
        )

        return AuditStatsResponse(
            total_actions=totals[0],
            unique_actors=totals[1],
            unique_resource_types=totals[2],
            by_action=[CountByKey(key=k, count=n) for k, n in by_action.all()],
            by_resource_type=[CountByKey(key=k, count=n) for k, n in by_resource.all()],
            by_actor=[
                ActorActivity(
                    actor_id=actor_id,
                    username=username,
                    count=n,
                    last_action_at=to_utc_optional(last),
                )
                for actor_id, username, n, last in by_actor.all()
            ],
            daily=[CountByKey(key=str(d), count=n) for d, n in daily.all()],
        )


def serialize_audit_record(log: AuditRecord) -> dict[str, Any]:
    """Serialize audit record for export."""
    return {
        "id": str(log.id),
        "created_at": log.created_at.isoformat() if log.created_at else None,
        "actor_id": str(log.actor_id) if log.actor_id else None,
        "actor_email": log.actor_email,
        "action": log.action,
        "resource_type": log.resource_type,
        "resource_id": log.resource_id,
        "ip_address": log.ip_address,
        "user_agent": log.user_agent,
        "request_id": log.request_id,
        "summary": log.summary,
        "details": log.details,
    }

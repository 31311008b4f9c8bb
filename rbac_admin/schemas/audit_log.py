"""Audit log schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    """Schema for audit log response."""

    id: UUID
    actor_id: Optional[UUID]
    actor_email: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    resource_type: str
    resource_id: Optional[str]
    action: str
    details: Optional[dict]
    summary: Optional[str]
    request_id: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogFilter(BaseModel):
    """Schema for filtering audit logs."""

    actor_id: Optional[UUID] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    action: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class CountByKey(BaseModel):
    key: Optional[str]
    count: int


class ActorActivity(BaseModel):
    actor_id: Optional[UUID]
    username: Optional[str]
    count: int
    last_action_at: Optional[datetime]


class AuditStatsResponse(BaseModel):
    """Aggregated audit statistics for a time window."""

    total_actions: int
    unique_actors: int
    unique_resource_types: int
    by_action: list[CountByKey]
    by_resource_type: list[CountByKey]
    by_actor: list[ActorActivity]
    daily: list[CountByKey]


class AuditAction:
    """Audit action constants."""

    # Authorization decisions
    PERMISSION_DENIED = "permission_denied"
    ROLE_DENIED = "role_denied"

    # Authentication
    USER_REGISTERED = "user_registered"
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    PASSWORD_CHANGED = "password_changed"

    # Users
    USER_UPDATED = "user_updated"
    USER_ACTIVATED = "user_activated"
    USER_DEACTIVATED = "user_deactivated"
    USER_DELETED = "user_deleted"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"

    # Roles
    ROLE_CREATED = "role_created"
    ROLE_UPDATED = "role_updated"
    ROLE_ACTIVATED = "role_activated"
    ROLE_DEACTIVATED = "role_deactivated"
    ROLE_DELETED = "role_deleted"
    PERMISSION_ASSIGNED = "permission_assigned"
    PERMISSION_REMOVED = "permission_removed"

    # Permissions
    PERMISSION_CREATED = "permission_created"
    PERMISSION_UPDATED = "permission_updated"
    PERMISSION_ACTIVATED = "permission_activated"
    PERMISSION_DEACTIVATED = "permission_deactivated"
    PERMISSION_DELETED = "permission_deleted"

    # Audit
    AUDIT_EXPORTED = "audit_exported"


class ResourceType:
    USER = "user"
    ROLE = "role"
    PERMISSION = "permission"
    AUDIT = "audit"

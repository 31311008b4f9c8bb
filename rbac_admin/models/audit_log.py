"""Audit record model: append-only log of decisions and sensitive mutations."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from rbac_admin.utils.timezone import utc_now

from .base import Base, JSONType, UUIDMixin


class AuditRecord(Base, UUIDMixin):
    """
    Immutable audit log entry.

    Written once, never updated or deleted by the service. ``actor_id`` is
    null for system actions and survives the actor's deletion as null.
    """

    __tablename__ = "audit_logs"

    # Who performed the action
    actor_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    actor_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # Denormalized for history
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # What happened, to what
    action: Mapped[str] = mapped_column(String(50), index=True)
    resource_type: Mapped[str] = mapped_column(String(50), index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Request context
    request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditRecord {self.action} {self.resource_type}:{self.resource_id}>"

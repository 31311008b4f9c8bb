"""
Base model classes and mixins.

- TimestampMixin: created_at, updated_at
- UUIDMixin: UUID primary key
"""

from datetime import datetime
from typing import Any
from uuid import UUID as PyUUID, uuid4
from sqlalchemy import DateTime, JSON, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rbac_admin.utils.timezone import utc_now

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    # All datetimes are timezone-aware
    type_annotation_map = {
        datetime: DateTime(timezone=True),
        PyUUID: Uuid(),
    }

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class TimestampMixin:
    """
    Mixin for created_at and updated_at timestamps.

    All timestamps are stored in UTC. Values are generated client-side so
    they are available on the instance right after flush.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        nullable=False,
    )


class UUIDMixin:
    """
    Mixin for UUID primary key.

    Usage:
        class MyModel(Base, UUIDMixin):
            __tablename__ = "my_table"
    """

    id: Mapped[PyUUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid4,
    )

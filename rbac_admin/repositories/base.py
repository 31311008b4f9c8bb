"""
Shared data access for the catalogue tables (users, roles, permissions).

Grant rows have their own store in ``repositories.grants``; this base only
covers the plain lookups and writes the admin services make on a single
entity.
"""

from typing import Generic, Type, TypeVar
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_admin.models.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """
    Usage:
        class RoleRepository(BaseRepository[Role]):
            model = Role

        role = await RoleRepository(db).get_by_id(role_id)
    """

    model: Type[ModelT]

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, entity_id: UUID) -> ModelT | None:
        return await self.db.scalar(select(self.model).where(self.model.id == entity_id))

    async def update(self, entity: ModelT, **changes) -> ModelT:
        """Copy ``changes`` onto a loaded entity and flush; unknown fields are ignored."""
        for field, value in changes.items():
            if hasattr(entity, field):
                setattr(entity, field, value)
        await self.db.flush()
        return entity

    async def delete(self, entity_id: UUID) -> bool:
        result = await self.db.execute(delete(self.model).where(self.model.id == entity_id))
        return result.rowcount > 0

"""
Generic async repository.

Tenant scoping is the host platform's concern; service methods check the
actor's organization against the record before any governed write.
"""

import uuid
from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.db.engine import Base
from riskgov.errors import NotFoundError

ModelT = TypeVar("ModelT", bound=Base)
CreateSchemaT = TypeVar("CreateSchemaT", bound=BaseModel)


class BaseRepository(Generic[ModelT, CreateSchemaT]):
    """Generic async CRUD operations."""

    def __init__(self, model: Type[ModelT]):
        self.model = model

    @property
    def resource(self) -> str:
        return self.model.__name__

    async def create(
        self,
        db: AsyncSession,
        data: Optional[CreateSchemaT] = None,
        **extra_fields: Any,
    ) -> ModelT:
        """Create a new record from a schema plus explicit column values."""
        values = data.model_dump(exclude_unset=True) if data is not None else {}
        values.update(extra_fields)
        obj = self.model(**values)
        db.add(obj)
        await db.flush()
        return obj

    async def get_by_id(self, db: AsyncSession, id: uuid.UUID) -> Optional[ModelT]:
        result = await db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_or_raise(self, db: AsyncSession, id: uuid.UUID) -> ModelT:
        """Like get_by_id, but unknown ids raise NotFoundError."""
        obj = await self.get_by_id(db, id)
        if obj is None:
            raise NotFoundError(self.resource, id)
        return obj

    async def list(
        self,
        db: AsyncSession,
        offset: int = 0,
        limit: int = 50,
        order_by: str = "created_at",
        descending: bool = True,
        **filters: Any,
    ) -> Sequence[ModelT]:
        """List records with simple equality filters and pagination."""
        col = getattr(self.model, order_by, self.model.id)
        stmt = select(self.model)
        for name, value in filters.items():
            stmt = stmt.where(getattr(self.model, name) == value)
        stmt = stmt.order_by(col.desc() if descending else col.asc()).offset(offset).limit(limit)
        result = await db.execute(stmt)
        return result.scalars().all()

    async def count(self, db: AsyncSession, **filters: Any) -> int:
        stmt = select(func.count()).select_from(self.model)
        for name, value in filters.items():
            stmt = stmt.where(getattr(self.model, name) == value)
        result = await db.execute(stmt)
        return result.scalar_one()

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseOperations(Generic[ModelType]):
    """Base CRUD operations for all models.

    Operations only flush; the caller owns the transaction and decides
    when to commit or roll back.
    """

    def __init__(self, model: type[ModelType], pk_field: str = "id"):
        self.model = model
        self.pk_field = pk_field

    async def get(self, db: AsyncSession, id: str) -> ModelType | None:
        """Get a single record by primary key."""
        statement = select(self.model).where(getattr(self.model, self.pk_field) == id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def create(self, db: AsyncSession, obj_in: dict[str, Any]) -> ModelType:
        """Create a new record."""
        db_obj = self.model(**obj_in)
        db.add(db_obj)
        await db.flush()
        await db.refresh(db_obj)
        return db_obj

    async def update(
        self,
        db: AsyncSession,
        db_obj: ModelType,
        obj_in: dict[str, Any],
    ) -> ModelType:
        """Update an existing record.

        All keys in obj_in are applied, including None values.
        """
        for field, value in obj_in.items():
            setattr(db_obj, field, value)
        db.add(db_obj)
        await db.flush()
        await db.refresh(db_obj)
        return db_obj

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union

from loguru import logger
from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.core.exceptions import DatabaseError, ResourceNotFoundError
from zenscribe.db.base_class import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    """
    Repository for one model

    Reads and writes flush but never commit; callers own the transaction.
    Driver errors are logged and surfaced as DatabaseError.
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    @property
    def name(self) -> str:
        return self.model.__name__

    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        """Record with the given primary key, or None"""
        try:
            result = await db.execute(select(self.model).where(self.model.id == id))
            return result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving {self.name} {id}: {e}")
            raise DatabaseError(f"Error retrieving {self.name}")

    async def get_or_404(self, db: AsyncSession, id: Any) -> ModelType:
        """
        Record with the given primary key

        Raises:
            ResourceNotFoundError: If no record has that key
        """
        obj = await self.get(db, id=id)
        if obj is None:
            raise ResourceNotFoundError(self.name, str(id))
        return obj

    async def get_by_condition(
            self, db: AsyncSession, *, condition=None, skip: int = 0, limit: int = 100
    ) -> List[ModelType]:
        """
        Page of records, newest first

        Args:
            db: Database session
            condition: Optional SQLAlchemy filter expression
            skip: Records to skip
            limit: Maximum records returned

        Returns:
            Matching records
        """
        query = select(self.model)
        if condition is not None:
            query = query.where(condition)
        query = query.order_by(self.model.created_at.desc()).offset(skip).limit(limit)

        try:
            result = await db.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing {self.name}: {e}")
            raise DatabaseError(f"Error retrieving {self.name} records")

    async def get_multi(self, db: AsyncSession, *, skip: int = 0, limit: int = 100) -> List[ModelType]:
        """Page of all records, newest first"""
        return await self.get_by_condition(db, skip=skip, limit=limit)

    async def count(self, db: AsyncSession, condition=None) -> int:
        """Number of records, optionally filtered"""
        query = select(func.count()).select_from(self.model)
        if condition is not None:
            query = query.where(condition)
        try:
            result = await db.execute(query)
            return result.scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.name}: {e}")
            raise DatabaseError(f"Error counting {self.name} records")

    async def create(self, db: AsyncSession, *, obj_in: CreateSchemaType, **kwargs) -> ModelType:
        """
        Insert a record from a schema

        Args:
            db: Database session
            obj_in: Validated input
            **kwargs: Columns not carried by the schema, such as the owner id

        Returns:
            Flushed and refreshed record
        """
        data = obj_in.model_dump()
        data.update(kwargs)
        db_obj = self.model(**data)
        db.add(db_obj)
        try:
            await db.flush()
            await db.refresh(db_obj)
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.name}: {e}")
            await db.rollback()
            raise DatabaseError(f"Error creating {self.name}")
        return db_obj

    async def update(
            self,
            db: AsyncSession,
            *,
            db_obj: ModelType,
            obj_in: Union[UpdateSchemaType, Dict[str, Any]]
    ) -> ModelType:
        """
        Apply the set fields of a schema, or a dict of columns, to a record

        Returns:
            Flushed and refreshed record
        """
        if isinstance(obj_in, dict):
            update_data = obj_in
        else:
            update_data = obj_in.model_dump(exclude_unset=True)

        for field, value in update_data.items():
            if hasattr(db_obj, field) and getattr(db_obj, field) != value:
                setattr(db_obj, field, value)

        try:
            await db.flush()
            await db.refresh(db_obj)
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.name} {db_obj.id}: {e}")
            await db.rollback()
            raise DatabaseError(f"Error updating {self.name}")
        return db_obj

    async def remove(self, db: AsyncSession, *, id: Any) -> Optional[ModelType]:
        """Delete a record by primary key; None if it did not exist"""
        obj = await self.get(db, id=id)
        if obj is None:
            return None

        try:
            await db.delete(obj)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error removing {self.name} {id}: {e}")
            await db.rollback()
            raise DatabaseError(f"Error removing {self.name}")
        return obj

    async def remove_by_condition(self, db: AsyncSession, *, condition) -> int:
        """Bulk delete; returns the number of rows removed"""
        try:
            result = await db.execute(delete(self.model).where(condition))
            await db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error removing {self.name} records: {e}")
            await db.rollback()
            raise DatabaseError(f"Error removing {self.name} records")
        return result.rowcount

"""Base CRUD class."""

from typing import Any, Generic, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import ColumnElement, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.db.unit_of_work import UnitOfWork
from billflow.models._base import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    """CRUD base class with default methods to Create, Read, Update, Delete (CRUD).

    Writes take an optional ``uow``. With a unit of work the change is only
    flushed and the caller commits; without one the change is committed here.
    """

    def __init__(self, model: Type[ModelType]):
        """CRUD object with default methods.

        Args:
        ----
            model (Type[ModelType]): The model to be used in the CRUD operations.

        """
        self.model = model

    def _to_columns(self, obj_in: Union[BaseModel, dict[str, Any]], **dump_kwargs) -> dict:
        """Dump a schema to column values; ``metadata`` is stored on the ``meta`` attribute."""
        data = dict(obj_in) if isinstance(obj_in, dict) else obj_in.model_dump(**dump_kwargs)
        if "metadata" in data and hasattr(self.model, "meta"):
            data["meta"] = data.pop("metadata")
        return data

    async def get(self, db: AsyncSession, id: UUID) -> Optional[ModelType]:
        """Get a single object by ID.

        Args:
        ----
            db (AsyncSession): The database session.
            id (UUID): The UUID of the object to get.

        Returns:
        -------
            Optional[ModelType]: The object with the given ID.

        """
        result = await db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_multi(
        self,
        db: AsyncSession,
        *,
        skip: int = 0,
        limit: Optional[int] = 100,
        filters: Optional[list[ColumnElement[bool]]] = None,
    ) -> list[ModelType]:
        """Get multiple objects, newest first.

        Args:
        ----
            db (AsyncSession): The database session.
            skip (int): The number of objects to skip.
            limit (Optional[int]): The number of objects to return, None for all.
            filters (Optional[list]): Extra WHERE clauses.

        Returns:
        -------
            list[ModelType]: A list of objects.

        """
        query = select(self.model).where(*(filters or [])).order_by(self.model.created_at.desc())
        query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def count(
        self, db: AsyncSession, *, filters: Optional[list[ColumnElement[bool]]] = None
    ) -> int:
        """Count objects matching ``filters``."""
        query = select(func.count()).select_from(self.model).where(*(filters or []))
        result = await db.execute(query)
        return int(result.scalar_one())

    async def create(
        self,
        db: AsyncSession,
        *,
        obj_in: Union[CreateSchemaType, dict[str, Any]],
        uow: Optional[UnitOfWork] = None,
    ) -> ModelType:
        """Create a new object.

        Args:
        ----
            db (AsyncSession): The database session.
            obj_in (CreateSchemaType): The object to create.
            uow (UnitOfWork, optional): Unit of work for transaction control.
                If not provided, auto-commits the transaction.

        Returns:
        -------
            ModelType: The created object.

        """
        db_obj = self.model(**self._to_columns(obj_in))
        db.add(db_obj)

        if uow is None:
            await db.commit()
            await db.refresh(db_obj)
        else:
            await db.flush()

        return db_obj

    async def update(
        self,
        db: AsyncSession,
        *,
        db_obj: ModelType,
        obj_in: Union[UpdateSchemaType, dict[str, Any]],
        uow: Optional[UnitOfWork] = None,
    ) -> ModelType:
        """Update an object.

        Args:
        ----
            db (AsyncSession): The database session.
            db_obj (ModelType): The object to update.
            obj_in (Union[UpdateSchemaType, dict[str, Any]]): The new object data.
            uow (UnitOfWork, optional): Unit of work for transaction control.

        Returns:
        -------
            ModelType: The updated object

        """
        for key, value in self._to_columns(obj_in, exclude_unset=True).items():
            if hasattr(db_obj, key):
                setattr(db_obj, key, value)
        db.add(db_obj)

        if uow is None:
            await db.commit()
            await db.refresh(db_obj)
        else:
            await db.flush()

        return db_obj

    async def remove(
        self, db: AsyncSession, *, id: UUID, uow: Optional[UnitOfWork] = None
    ) -> Optional[ModelType]:
        """Delete an object.

        Args:
        ----
            db (AsyncSession): The database session.
            id (UUID): The UUID of the object to delete.
            uow (UnitOfWork, optional): Unit of work for transaction control.

        Returns:
        -------
            Optional[ModelType]: The deleted object.

        """
        db_obj = await self.get(db, id)
        if db_obj is None:
            return None

        await db.delete(db_obj)

        if uow is None:
            await db.commit()

        return db_obj

"""Unit of work for grouping several CRUD writes into one transaction."""

from types import TracebackType
from typing import Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession


class UnitOfWork:
    """Transaction scope over an AsyncSession.

    CRUD methods that receive a ``uow`` only flush; nothing is persisted until
    ``commit()`` is called inside the block. Leaving the block without a commit,
    or with an exception, rolls everything back.

    Example:
    -------
        async with UnitOfWork(db) as uow:
            invoice = await crud.invoice.create(uow.session, obj_in=invoice_in, uow=uow)
            await crud.subscription.update(uow.session, db_obj=sub, obj_in=advance, uow=uow)
            await uow.commit()

    """

    def __init__(self, session: AsyncSession):
        """Bind the unit of work to a session."""
        self.session = session
        self._committed = False

    async def __aenter__(self) -> "UnitOfWork":
        """Start the unit of work."""
        self._committed = False
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        """Roll back unless the block committed cleanly."""
        if exc_type is not None or not self._committed:
            await self.rollback()

    async def commit(self) -> None:
        """Commit the transaction."""
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        """Roll back the transaction."""
        await self.session.rollback()
        self._committed = False

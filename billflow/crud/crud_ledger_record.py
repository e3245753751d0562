"""CRUD operations for mirrored ledger items."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.db.unit_of_work import UnitOfWork
from billflow.models.ledger_record import LedgerRecord


class CRUDLedgerRecord(CRUDBase[LedgerRecord, dict, dict]):
    """CRUD operations for mirrored ledger items."""

    async def get_by_external_id(
        self, db: AsyncSession, kind: str, external_id: str
    ) -> Optional[LedgerRecord]:
        """The mirrored item for a gateway id."""
        result = await db.execute(
            select(LedgerRecord).where(
                LedgerRecord.kind == kind, LedgerRecord.external_id == external_id
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        db: AsyncSession,
        *,
        kind: str,
        external_id: str,
        values: dict[str, Any],
        uow: Optional[UnitOfWork] = None,
    ) -> LedgerRecord:
        """Insert the item or overwrite the existing mirror of it."""
        existing = await self.get_by_external_id(db, kind, external_id)
        if existing is None:
            return await self.create(
                db, obj_in={"kind": kind, "external_id": external_id, **values}, uow=uow
            )
        return await self.update(db, db_obj=existing, obj_in=values, uow=uow)

    async def count_by_kind(self, db: AsyncSession, business_id: str) -> dict[str, int]:
        """Number of mirrored items per kind."""
        result = await db.execute(
            select(LedgerRecord.kind, func.count())
            .where(LedgerRecord.business_id == business_id)
            .group_by(LedgerRecord.kind)
        )
        return {kind: int(count) for kind, count in result.all()}

    async def get_last_synced_at(self, db: AsyncSession, business_id: str) -> Optional[datetime]:
        """When an item of the business was last written."""
        result = await db.execute(
            select(func.max(LedgerRecord.modified_at)).where(
                LedgerRecord.business_id == business_id
            )
        )
        return result.scalar_one_or_none()


ledger_record = CRUDLedgerRecord(LedgerRecord)

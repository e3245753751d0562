"""CRUD operations for customers."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.models.customer import Customer
from billflow.schemas.customer import CustomerCreate, CustomerUpdate


class CRUDCustomer(CRUDBase[Customer, CustomerCreate, CustomerUpdate]):
    """CRUD operations for customers."""

    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[Customer]:
        """Get a customer by billing email."""
        result = await db.execute(select(Customer).where(Customer.email == email))
        return result.scalar_one_or_none()

    async def get_by_stripe_id(
        self, db: AsyncSession, stripe_customer_id: str
    ) -> Optional[Customer]:
        """Get a customer by payment gateway id."""
        result = await db.execute(
            select(Customer).where(Customer.stripe_customer_id == stripe_customer_id)
        )
        return result.scalar_one_or_none()

    async def count_active(self, db: AsyncSession) -> int:
        """Count customers with status active."""
        return await self.count(db, filters=[Customer.status == "active"])


customer = CRUDCustomer(Customer)

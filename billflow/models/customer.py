"""Customer model."""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from billflow.models._base import Base, JSONDict


class Customer(Base):
    """A billable party, optionally linked to both external gateways."""

    __tablename__ = "customer"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    # Gateway identities
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, unique=True)
    ramp_business_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    meta: Mapped[dict] = mapped_column("metadata", JSONDict, nullable=False, default=dict)

"""Base models for the application."""

import uuid

from sqlalchemy import JSON, UUID, Column, DateTime, Numeric
from sqlalchemy.orm import DeclarativeBase

from billflow.core.datetime_utils import utc_now_naive

# Money columns: two decimal places, values handled as decimal.Decimal
Money = Numeric(12, 2, asdecimal=True)

# Free-form key/value payloads
JSONDict = JSON


class Base(DeclarativeBase):
    """Base class for all models."""

    id = Column(UUID, primary_key=True, default=uuid.uuid4, nullable=False)
    created_at = Column(DateTime, default=utc_now_naive, nullable=False)
    modified_at = Column(DateTime, default=utc_now_naive, onupdate=utc_now_naive, nullable=False)

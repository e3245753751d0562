"""Shared fixtures: an in-memory database and factories for billing entities."""

from datetime import timedelta
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from billflow import crud
from billflow.core.datetime_utils import utc_now_naive
from billflow.core.periods import add_interval
from billflow.db.init_db import init_db
from billflow.integrations.ramp_client import RampClient
from billflow.integrations.stripe_client import StripeClient


@pytest.fixture
async def engine():
    """A fresh in-memory SQLite database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    """A session bound to the test database."""
    session_factory = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_customer(db):
    """Factory for stored customers."""
    counter = {"n": 0}

    async def _make(**overrides: Any):
        counter["n"] += 1
        values = {
            "name": f"Customer {counter['n']}",
            "email": f"customer{counter['n']}@example.com",
            "status": "active",
            "meta": {},
        }
        values.update(overrides)
        return await crud.customer.create(db, obj_in=values)

    return _make


@pytest.fixture
def make_plan(db):
    """Factory for stored plans, monthly at 99.00 USD by default."""

    async def _make(**overrides: Any):
        values = {
            "name": "Pro",
            "amount": Decimal("99.00"),
            "currency": "USD",
            "interval": "month",
            "interval_count": 1,
            "usage_unit_amount": Decimal("0"),
            "active": True,
            "meta": {},
        }
        values.update(overrides)
        return await crud.plan.create(db, obj_in=values)

    return _make


@pytest.fixture
def make_subscription(db):
    """Factory for stored subscriptions in the current period."""

    async def _make(customer, plan, **overrides: Any):
        start = overrides.pop("current_period_start", utc_now_naive() - timedelta(days=1))
        values = {
            "customer_id": customer.id,
            "plan_id": plan.id,
            "quantity": 1,
            "currency": plan.currency,
            "status": "active",
            "current_period_start": start,
            "current_period_end": add_interval(start, plan.interval, plan.interval_count),
            "cancel_at_period_end": False,
            "meta": {},
        }
        values.update(overrides)
        return await crud.subscription.create(db, obj_in=values)

    return _make


@pytest.fixture
def make_payment(db):
    """Factory for stored payments, succeeded for 100.00 USD by default."""

    async def _make(customer, **overrides: Any):
        values = {
            "customer_id": customer.id,
            "amount": Decimal("100.00"),
            "currency": "USD",
            "status": "succeeded",
            "refunded_amount": Decimal("0"),
            "meta": {},
        }
        values.update(overrides)
        return await crud.payment.create(db, obj_in=values)

    return _make


@pytest.fixture
def mock_stripe_gateway():
    """A payment gateway double; webhook verification decodes the body unchecked."""
    gateway = MagicMock(spec=StripeClient)
    for name in (
        "create_payment_intent",
        "create_refund",
        "create_subscription",
        "cancel_subscription",
        "resume_subscription",
        "update_subscription",
    ):
        setattr(gateway, name, AsyncMock())
    return gateway


@pytest.fixture
def mock_ledger_gateway():
    """A ledger gateway double with async listing methods."""
    gateway = MagicMock(spec=RampClient)
    gateway.list_transactions = AsyncMock()
    gateway.list_bills = AsyncMock(return_value={"data": [], "page": {"next": None}})
    gateway.list_reimbursements = AsyncMock(return_value={"data": [], "page": {"next": None}})
    return gateway

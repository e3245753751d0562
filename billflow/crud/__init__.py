"""CRUD operations for the application."""

from .crud_credit_ledger import credit_ledger
from .crud_customer import customer
from .crud_invoice import invoice
from .crud_ledger_record import ledger_record
from .crud_payment import payment
from .crud_plan import plan
from .crud_refund import refund
from .crud_subscription import subscription
from .crud_usage_record import usage_record
from .crud_webhook_event import webhook_event

__all__ = [
    "credit_ledger",
    "customer",
    "invoice",
    "ledger_record",
    "payment",
    "plan",
    "refund",
    "subscription",
    "usage_record",
    "webhook_event",
]

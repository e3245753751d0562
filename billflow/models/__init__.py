"""Models for the application."""

from .credit_ledger_entry import CreditLedgerEntry
from .customer import Customer
from .invoice import Invoice
from .ledger_record import LedgerRecord
from .payment import Payment
from .plan import Plan
from .refund import Refund
from .subscription import Subscription
from .usage_record import UsageRecord
from .webhook_event import WebhookEvent

# flake8: noqa: F401

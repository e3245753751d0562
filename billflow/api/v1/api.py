"""API routes for the FastAPI application."""

from billflow.api.router import TrailingSlashRouter
from billflow.api.v1.endpoints import (
    billing,
    customers,
    invoices,
    ledger,
    payments,
    plans,
    subscriptions,
)

api_router = TrailingSlashRouter()
api_router.include_router(customers.router, prefix="/customers", tags=["customers"])
api_router.include_router(plans.router, prefix="/plans", tags=["plans"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(ledger.router, prefix="/ledger", tags=["ledger"])

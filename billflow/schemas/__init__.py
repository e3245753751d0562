"""Schemas for the application."""

from .billing import (
    BillingMetrics,
    BillingOverview,
    BillingReport,
    CustomerRevenue,
    DateRange,
    PlanRevenue,
    ProrationResult,
    ReportInvoiceRow,
    ReportPaymentRow,
    ReportRefundRow,
    ReportSummary,
    RetryInvoicePaymentRequest,
    RevenueBreakdown,
)
from .common import (
    ApiResponse,
    BatchResult,
    ErrorDetail,
    Page,
    PaginatedResponse,
    Pagination,
    PaginationParams,
)
from .customer import (
    CreditBalance,
    CreditGrant,
    Customer,
    CustomerCreate,
    CustomerStatus,
    CustomerUpdate,
)
from .invoice import (
    Invoice,
    InvoiceCreate,
    InvoiceLineItem,
    InvoiceLineItemCreate,
    InvoiceStatus,
    InvoiceUpdate,
    LineItemKind,
    PayInvoiceRequest,
)
from .ledger import (
    CreateLedgerCard,
    CreateLedgerUser,
    LedgerBill,
    LedgerReimbursement,
    LedgerTransaction,
)
from .payment import (
    CapturePaymentRequest,
    ConfirmPaymentRequest,
    Payment,
    PaymentCreate,
    PaymentStatus,
    PaymentSummary,
    Refund,
    RefundCreate,
    RefundReason,
)
from .plan import Plan, PlanCreate, PlanUpdate
from .subscription import (
    CancelRequest,
    ChangePlanRequest,
    PauseBehavior,
    PauseCollection,
    Subscription,
    SubscriptionCreate,
    SubscriptionStatus,
    SubscriptionUpdate,
    SubscriptionWithPlan,
    UpdateQuantityRequest,
)
from .sync import (
    FullSyncResult,
    IncrementalSyncRequest,
    IntegrityDiscrepancy,
    IntegrityReport,
    LedgerResource,
    SyncError,
    SyncResult,
    SyncStatus,
    TransactionSyncOptions,
)
from .usage import UsageAction, UsageRecord, UsageRecordCreate
from .webhook import WebhookAck, WebhookSource

# flake8: noqa: F401

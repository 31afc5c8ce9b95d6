"""Application constants and configuration values."""

from decimal import Decimal

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_REASON_LENGTH = 500

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# CORS origins for development and production
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",      # React dev server (Vite)
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Money
CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MAX_DISCOUNT_PERCENTAGE = Decimal("100")
# Largest value a Numeric(10, 2) column holds
MAX_MONEY_AMOUNT = Decimal("99999999.99")

# Invoice lifecycle
INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_SENT = "sent"
INVOICE_STATUS_PARTIAL = "partial"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_OVERDUE = "overdue"
INVOICE_STATUS_CANCELED = "canceled"
INVOICE_STATUSES = (
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_CANCELED,
)
TERMINAL_INVOICE_STATUSES = (INVOICE_STATUS_PAID, INVOICE_STATUS_CANCELED)

DISCOUNT_TYPE_NONE = "none"
DISCOUNT_TYPE_PERCENTAGE = "percentage"
DISCOUNT_TYPE_VALUE = "value"
DISCOUNT_TYPES = (DISCOUNT_TYPE_NONE, DISCOUNT_TYPE_PERCENTAGE, DISCOUNT_TYPE_VALUE)

PAYMENT_METHODS = ("cash", "card", "bank_transfer", "insurance", "other")

# Payment plans
PLAN_FREQUENCY_WEEKLY = "weekly"
PLAN_FREQUENCY_BIWEEKLY = "biweekly"
PLAN_FREQUENCY_MONTHLY = "monthly"
PLAN_FREQUENCIES = (PLAN_FREQUENCY_WEEKLY, PLAN_FREQUENCY_BIWEEKLY, PLAN_FREQUENCY_MONTHLY)
PLAN_STATUS_ACTIVE = "active"
PLAN_STATUS_COMPLETED = "completed"
PLAN_STATUSES = (PLAN_STATUS_ACTIVE, PLAN_STATUS_COMPLETED)

# Adjustments
ADJUSTMENT_WRITE_OFF = "write_off"
ADJUSTMENT_DISCOUNT = "discount"
ADJUSTMENT_CORRECTION = "correction"
ADJUSTMENT_FEE = "fee"
ADJUSTMENT_TYPES = (ADJUSTMENT_WRITE_OFF, ADJUSTMENT_DISCOUNT, ADJUSTMENT_CORRECTION, ADJUSTMENT_FEE)

# Audit trail
AUDIT_ACTION_CREATE = "CREATE"
AUDIT_ACTION_UPDATE = "UPDATE"
AUDIT_ACTION_DELETE = "DELETE"
AUDIT_ACTIONS = (AUDIT_ACTION_CREATE, AUDIT_ACTION_UPDATE, AUDIT_ACTION_DELETE)

ENTITY_INVOICE = "invoice"
ENTITY_INVOICE_ITEM = "invoice_item"
ENTITY_PAYMENT = "payment"
ENTITY_PAYMENT_PLAN = "payment_plan"
ENTITY_INSTALLMENT = "payment_plan_installment"
ENTITY_ADJUSTMENT = "invoice_adjustment"

# Roles
ROLE_SUPER_ADMIN = "super_admin"

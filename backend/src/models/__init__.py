# Package initialization
# Import all models to ensure relationships are properly established
from .organization import Organization
from .invoice import Invoice, InvoiceItem
from .payment import Payment
from .payment_plan import PaymentPlan, PaymentPlanInstallment
from .invoice_adjustment import InvoiceAdjustment
from .audit_log import AuditLog
from .activity_log import ActivityLog

__all__ = [
    "Organization",
    "Invoice",
    "InvoiceItem",
    "Payment",
    "PaymentPlan",
    "PaymentPlanInstallment",
    "InvoiceAdjustment",
    "AuditLog",
    "ActivityLog",
]

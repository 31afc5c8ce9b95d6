"""
Services package for the ledger business logic.

This package contains service classes that encapsulate the financial rules
shared across the API endpoints.
"""

from .invoice_service import InvoiceService
from .payment_service import PaymentService
from .payment_plan_service import PaymentPlanService
from .adjustment_service import AdjustmentService
from .audit_service import AuditTrailService
from .activity_log_service import ActivityLogService
from .invoice_number_service import InvoiceNumberService
from .ledger_types import MutationResult

__all__ = [
    "InvoiceService",
    "PaymentService",
    "PaymentPlanService",
    "AdjustmentService",
    "AuditTrailService",
    "ActivityLogService",
    "InvoiceNumberService",
    "MutationResult",
]

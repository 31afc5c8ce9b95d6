"""
Shared response models for ledger API endpoints.

This module contains Pydantic response models that are shared across
multiple routers so invoices, payments and plans serialize the same way
everywhere.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from models import Invoice


class InvoiceItemResponse(BaseModel):
    """Response model for an invoice line item."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    display_order: int


class InvoiceResponse(BaseModel):
    """Response model for an invoice with its items."""
    id: int
    organization_id: int
    patient_id: int
    invoice_number: str
    status: str  # Persisted status
    effective_status: str  # Status shown to users (overdue is derived)
    total_amount: Decimal
    discount_type: str
    discount_value: Decimal
    final_amount: Decimal
    paid_amount: Decimal
    balance_due: Decimal
    issued_date: date
    due_date: Optional[date] = None
    notes: Optional[str] = None
    sent_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    items: List[InvoiceItemResponse]

    @classmethod
    def from_invoice(cls, invoice: Invoice, balance_due: Decimal, effective_status: str) -> "InvoiceResponse":
        return cls(
            id=invoice.id,
            organization_id=invoice.organization_id,
            patient_id=invoice.patient_id,
            invoice_number=invoice.invoice_number,
            status=invoice.status,
            effective_status=effective_status,
            total_amount=invoice.total_amount,
            discount_type=invoice.discount_type,
            discount_value=invoice.discount_value,
            final_amount=invoice.final_amount,
            paid_amount=invoice.paid_amount,
            balance_due=balance_due,
            issued_date=invoice.issued_date,
            due_date=invoice.due_date,
            notes=invoice.notes,
            sent_at=invoice.sent_at,
            canceled_at=invoice.canceled_at,
            cancel_reason=invoice.cancel_reason,
            created_at=invoice.created_at,
            items=[InvoiceItemResponse.model_validate(item) for item in invoice.items],
        )


class InvoiceListResponse(BaseModel):
    """Response model for listing invoices."""
    invoices: List[InvoiceResponse]


class PaymentResponse(BaseModel):
    """Response model for a payment."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    payment_plan_installment_id: Optional[int] = None
    amount: Decimal
    payment_date: date
    payment_method: str
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    is_refunded: bool
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    created_at: datetime


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]


class BalanceResponse(BaseModel):
    invoice_id: int
    final_amount: Decimal
    paid_amount: Decimal
    balance_due: Decimal


class InstallmentResponse(BaseModel):
    """Response model for a payment plan installment."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    installment_number: int
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    is_paid: bool
    paid_date: Optional[date] = None


class PaymentPlanResponse(BaseModel):
    """Response model for a payment plan with its installments."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    patient_id: int
    total_amount: Decimal
    frequency: str
    number_of_installments: int
    installment_amount: Decimal
    start_date: date
    status: str
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    installments: List[InstallmentResponse]


class PaymentPlanListResponse(BaseModel):
    plans: List[PaymentPlanResponse]


class AdjustmentResponse(BaseModel):
    """Response model for an invoice adjustment."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    type: str
    amount: Decimal
    reason: str
    applied_date: date
    created_by_id: Optional[int] = None
    created_at: datetime


class AdjustmentListResponse(BaseModel):
    adjustments: List[AdjustmentResponse]


class AuditLogResponse(BaseModel):
    """Response model for an audit trail entry."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    user_role: str
    action_type: str
    entity_type: str
    entity_id: str
    previous_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    ip_address: Optional[str] = None
    timestamp: datetime


class AuditLogListResponse(BaseModel):
    entries: List[AuditLogResponse]


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details: Optional[str] = None
    created_at: datetime


class ActivityListResponse(BaseModel):
    activities: List[ActivityResponse]

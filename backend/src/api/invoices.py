"""
Invoice API endpoints.

Handles invoice creation, draft editing, sending, voiding and listing.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.ledger_errors import internal_error, ledger_http_error, mark_mutation
from api.responses import (
    AdjustmentListResponse, AdjustmentResponse, BalanceResponse, InvoiceListResponse, InvoiceResponse,
    PaymentListResponse, PaymentResponse,
)
from auth.dependencies import get_current_actor, get_tenant_scope
from auth.scope import ActorContext, TenantScope
from core.database import get_db
from core.exceptions import LedgerError
from models import Invoice
from services import AdjustmentService, InvoiceService, PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


# Request Models
class InvoiceItemRequest(BaseModel):
    """Request model for an invoice line item."""
    description: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=1)
    unit_price: Decimal = Field(..., ge=0)


class CreateInvoiceRequest(BaseModel):
    """Request model for invoice creation."""
    patient_id: int = Field(..., gt=0)
    items: List[InvoiceItemRequest] = Field(..., min_length=1)
    discount_type: Optional[str] = Field(None, description="'none', 'percentage' or 'value'")
    discount_value: Decimal = Field(Decimal("0"), ge=0)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    issued_date: Optional[date] = None


class DiscountRequest(BaseModel):
    discount_type: Optional[str] = Field(None, description="'none', 'percentage' or 'value'")
    discount_value: Decimal = Field(Decimal("0"), ge=0)


class UpdateInvoiceRequest(BaseModel):
    """Only fields present in the body are changed; null clears them."""
    due_date: Optional[date] = None
    notes: Optional[str] = None


class VoidInvoiceRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


def invoice_response(db: Session, invoice: Invoice) -> InvoiceResponse:
    return InvoiceResponse.from_invoice(
        invoice,
        balance_due=PaymentService.compute_balance_due(db, invoice),
        effective_status=InvoiceService.effective_status(invoice),
    )


@router.post("/invoices", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    request: CreateInvoiceRequest,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Create a draft invoice."""
    try:
        result = InvoiceService.create_invoice(
            db,
            scope=scope,
            actor=actor,
            patient_id=request.patient_id,
            items=[item.model_dump() for item in request.items],
            discount_type=request.discount_type,
            discount_value=request.discount_value,
            due_date=request.due_date,
            notes=request.notes,
            issued_date=request.issued_date,
            idempotency_key=idempotency_key,
        )
        mark_mutation(response, result)
        return invoice_response(db, result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Failed to create invoice", e)


@router.get("/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    patient_id: Optional[int] = Query(None),
    invoice_status: Optional[str] = Query(None, alias="status"),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """List invoices, optionally filtered by patient and status."""
    try:
        invoices = InvoiceService.list_invoices(db, scope=scope, patient_id=patient_id, status=invoice_status)
        return InvoiceListResponse(invoices=[invoice_response(db, invoice) for invoice in invoices])
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to list invoices", e)


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: int,
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        invoice = InvoiceService.get_invoice_with_items(db, scope=scope, invoice_id=invoice_id)
        return invoice_response(db, invoice)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to get invoice", e)


@router.post("/invoices/{invoice_id}/items", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def add_invoice_item(
    invoice_id: int,
    request: InvoiceItemRequest,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Add a line item to a draft invoice."""
    try:
        result = InvoiceService.add_item(
            db,
            scope=scope,
            actor=actor,
            invoice_id=invoice_id,
            description=request.description,
            quantity=request.quantity,
            unit_price=request.unit_price,
        )
        mark_mutation(response, result)
        return invoice_response(db, result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to add invoice item", e)


@router.delete("/invoices/{invoice_id}/items/{item_id}", response_model=InvoiceResponse)
async def remove_invoice_item(
    invoice_id: int,
    item_id: int,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Remove a line item from a draft invoice."""
    try:
        result = InvoiceService.remove_item(db, scope=scope, actor=actor, invoice_id=invoice_id, item_id=item_id)
        mark_mutation(response, result)
        return invoice_response(db, result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to remove invoice item", e)


@router.put("/invoices/{invoice_id}/discount", response_model=InvoiceResponse)
async def update_invoice_discount(
    invoice_id: int,
    request: DiscountRequest,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        result = InvoiceService.update_discount(
            db,
            scope=scope,
            actor=actor,
            invoice_id=invoice_id,
            discount_type=request.discount_type,
            discount_value=request.discount_value,
        )
        mark_mutation(response, result)
        return invoice_response(db, result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to update discount", e)


@router.patch("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: int,
    request: UpdateInvoiceRequest,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Update due date and/or notes of an open invoice."""
    try:
        changes = request.model_dump(exclude_unset=True)
        result = InvoiceService.update_details(db, scope=scope, actor=actor, invoice_id=invoice_id, **changes)
        mark_mutation(response, result)
        return invoice_response(db, result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to update invoice", e)


@router.post("/invoices/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(
    invoice_id: int,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        result = InvoiceService.send_invoice(db, scope=scope, actor=actor, invoice_id=invoice_id)
        mark_mutation(response, result)
        return invoice_response(db, result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to send invoice", e)


@router.post("/invoices/{invoice_id}/void", response_model=InvoiceResponse)
async def void_invoice(
    invoice_id: int,
    request: VoidInvoiceRequest,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Cancel an invoice that is not paid."""
    try:
        result = InvoiceService.void_invoice(
            db, scope=scope, actor=actor, invoice_id=invoice_id, reason=request.reason
        )
        mark_mutation(response, result)
        return invoice_response(db, result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to void invoice", e)


@router.get("/invoices/{invoice_id}/balance", response_model=BalanceResponse)
async def get_invoice_balance(
    invoice_id: int,
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        invoice = InvoiceService.get_invoice(db, scope=scope, invoice_id=invoice_id)
        return BalanceResponse(
            invoice_id=invoice.id,
            final_amount=invoice.final_amount,
            paid_amount=invoice.paid_amount,
            balance_due=PaymentService.compute_balance_due(db, invoice),
        )
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to get balance", e)


@router.get("/invoices/{invoice_id}/payments", response_model=PaymentListResponse)
async def list_invoice_payments(
    invoice_id: int,
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        payments = PaymentService.get_payments_for_invoice(db, scope=scope, invoice_id=invoice_id)
        return PaymentListResponse(payments=[PaymentResponse.model_validate(payment) for payment in payments])
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to list payments", e)


@router.get("/invoices/{invoice_id}/adjustments", response_model=AdjustmentListResponse)
async def list_invoice_adjustments(
    invoice_id: int,
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        adjustments = AdjustmentService.get_adjustments(db, scope=scope, invoice_id=invoice_id)
        return AdjustmentListResponse(
            adjustments=[AdjustmentResponse.model_validate(adjustment) for adjustment in adjustments]
        )
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to list adjustments", e)

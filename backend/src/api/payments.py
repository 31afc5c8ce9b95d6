"""
Payment API endpoints.

Handles recording payments against invoices and refunding them.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.ledger_errors import internal_error, ledger_http_error, mark_mutation
from api.responses import PaymentResponse
from auth.dependencies import get_current_actor, get_tenant_scope
from auth.scope import ActorContext, TenantScope
from core.database import get_db
from core.exceptions import LedgerError
from services import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


class RecordPaymentRequest(BaseModel):
    """Request model for recording a payment."""
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field(..., description="'cash', 'card', 'bank_transfer', 'insurance' or 'other'")
    payment_date: Optional[date] = None
    reference_number: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    payment_plan_installment_id: Optional[int] = None


class RefundPaymentRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


@router.post("/invoices/{invoice_id}/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    invoice_id: int,
    request: RecordPaymentRequest,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Record a payment on a sent or partially paid invoice."""
    try:
        result = PaymentService.record_payment(
            db,
            scope=scope,
            actor=actor,
            invoice_id=invoice_id,
            amount=request.amount,
            payment_method=request.payment_method,
            payment_date=request.payment_date,
            reference_number=request.reference_number,
            notes=request.notes,
            payment_plan_installment_id=request.payment_plan_installment_id,
            idempotency_key=idempotency_key,
        )
        mark_mutation(response, result)
        return PaymentResponse.model_validate(result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Failed to record payment", e)


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: int,
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        payment = PaymentService.get_payment(db, scope=scope, payment_id=payment_id)
        return PaymentResponse.model_validate(payment)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to get payment", e)


@router.post("/payments/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: int,
    request: RefundPaymentRequest,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """
    Refund a payment.

    The invoice's paid amount and status are recomputed; a paid invoice can
    move back to partial or sent.
    """
    try:
        result = PaymentService.refund_payment(
            db, scope=scope, actor=actor, payment_id=payment_id, reason=request.reason
        )
        mark_mutation(response, result)
        return PaymentResponse.model_validate(result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to refund payment", e)

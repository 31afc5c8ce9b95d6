"""
Payment plan API endpoints.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.ledger_errors import internal_error, ledger_http_error, mark_mutation
from api.responses import InstallmentResponse, PaymentPlanListResponse, PaymentPlanResponse, PaymentResponse
from auth.dependencies import get_current_actor, get_tenant_scope
from auth.scope import ActorContext, TenantScope
from core.database import get_db
from core.exceptions import LedgerError
from services import PaymentPlanService

logger = logging.getLogger(__name__)

router = APIRouter()


class ExplicitInstallmentRequest(BaseModel):
    due_date: date
    amount: Decimal = Field(..., gt=0)


class CreatePaymentPlanRequest(BaseModel):
    """Request model for payment plan creation."""
    frequency: str = Field(..., description="'weekly', 'biweekly' or 'monthly'")
    number_of_installments: Optional[int] = Field(None, ge=1)
    installment_amount: Optional[Decimal] = Field(None, gt=0)
    start_date: date
    installments: Optional[List[ExplicitInstallmentRequest]] = Field(
        None, description="Explicit schedule used instead of generating one"
    )
    notes: Optional[str] = None


class PayInstallmentRequest(BaseModel):
    payment_method: str
    amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to what is still owed")
    payment_date: Optional[date] = None
    reference_number: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


@router.post(
    "/invoices/{invoice_id}/payment-plans",
    response_model=PaymentPlanResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_payment_plan(
    invoice_id: int,
    request: CreatePaymentPlanRequest,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Create a payment plan for an invoice."""
    try:
        explicit = [item.model_dump() for item in request.installments] if request.installments else None
        result = PaymentPlanService.create_plan(
            db,
            scope=scope,
            actor=actor,
            invoice_id=invoice_id,
            frequency=request.frequency,
            number_of_installments=request.number_of_installments,
            installment_amount=request.installment_amount,
            start_date=request.start_date,
            explicit_installments=explicit,
            notes=request.notes,
        )
        mark_mutation(response, result)
        return PaymentPlanResponse.model_validate(result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to create payment plan", e)


@router.get("/payment-plans", response_model=PaymentPlanListResponse)
async def list_payment_plans(
    invoice_id: Optional[int] = Query(None),
    patient_id: Optional[int] = Query(None),
    plan_status: Optional[str] = Query(None, alias="status"),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """List payment plans, optionally filtered by invoice, patient and status."""
    try:
        plans = PaymentPlanService.list_plans(
            db, scope=scope, invoice_id=invoice_id, patient_id=patient_id, status=plan_status
        )
        return PaymentPlanListResponse(plans=[PaymentPlanResponse.model_validate(plan) for plan in plans])
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to list payment plans", e)


@router.get("/payment-plans/{plan_id}", response_model=PaymentPlanResponse)
async def get_payment_plan(
    plan_id: int,
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        plan = PaymentPlanService.get_plan(db, scope=scope, plan_id=plan_id)
        return PaymentPlanResponse.model_validate(plan)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to get payment plan", e)


@router.get("/payment-plans/{plan_id}/installments", response_model=List[InstallmentResponse])
async def list_installments(
    plan_id: int,
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        installments = PaymentPlanService.get_installments(db, scope=scope, plan_id=plan_id)
        return [InstallmentResponse.model_validate(installment) for installment in installments]
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to list installments", e)


@router.post(
    "/payment-plans/{plan_id}/installments/{installment_id}/pay",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED
)
async def pay_installment(
    plan_id: int,
    installment_id: int,
    request: PayInstallmentRequest,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Record a payment for one installment of a plan."""
    try:
        result = PaymentPlanService.pay_installment(
            db,
            scope=scope,
            actor=actor,
            plan_id=plan_id,
            installment_id=installment_id,
            payment_method=request.payment_method,
            amount=request.amount,
            payment_date=request.payment_date,
            reference_number=request.reference_number,
            notes=request.notes,
            idempotency_key=idempotency_key,
        )
        mark_mutation(response, result)
        return PaymentResponse.model_validate(result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to pay installment", e)

"""
Invoice adjustment API endpoints (write-offs, discounts, corrections, fees).
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.ledger_errors import internal_error, ledger_http_error, mark_mutation
from api.responses import AdjustmentResponse
from auth.dependencies import get_current_actor, get_tenant_scope
from auth.scope import ActorContext, TenantScope
from core.database import get_db
from core.exceptions import LedgerError
from services import AdjustmentService

logger = logging.getLogger(__name__)

router = APIRouter()


class AdjustmentRequest(BaseModel):
    """Request model for an adjustment. Only corrections may be negative."""
    type: str = Field(..., description="'write_off', 'discount', 'correction' or 'fee'")
    amount: Decimal
    reason: str = Field(..., min_length=1, max_length=500)
    applied_date: Optional[date] = None


class WriteOffRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    applied_date: Optional[date] = None


@router.post(
    "/invoices/{invoice_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED
)
async def apply_adjustment(
    invoice_id: int,
    request: AdjustmentRequest,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        result = AdjustmentService.apply_adjustment(
            db,
            scope=scope,
            actor=actor,
            invoice_id=invoice_id,
            adjustment_type=request.type,
            amount=request.amount,
            reason=request.reason,
            applied_date=request.applied_date,
        )
        mark_mutation(response, result)
        return AdjustmentResponse.model_validate(result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to apply adjustment", e)


@router.post(
    "/invoices/{invoice_id}/write-off",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED
)
async def write_off_invoice(
    invoice_id: int,
    request: WriteOffRequest,
    response: Response,
    actor: ActorContext = Depends(get_current_actor),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """Write off the remaining balance of an invoice."""
    try:
        result = AdjustmentService.write_off(
            db,
            scope=scope,
            actor=actor,
            invoice_id=invoice_id,
            reason=request.reason,
            applied_date=request.applied_date,
        )
        mark_mutation(response, result)
        return AdjustmentResponse.model_validate(result.value)
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to write off invoice", e)

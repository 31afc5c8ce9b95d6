"""
Service for invoice adjustments (write-offs, discounts, corrections, fees).

Adjustments are recorded next to the invoice and never rewrite its
`final_amount`; they only change the collectible balance.
"""

import logging
from datetime import date
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from auth.scope import ActorContext, TenantScope
from core.constants import (
    ADJUSTMENT_TYPES, ADJUSTMENT_CORRECTION, ADJUSTMENT_WRITE_OFF, MAX_REASON_LENGTH,
    TERMINAL_INVOICE_STATUSES, AUDIT_ACTION_CREATE, ENTITY_ADJUSTMENT, ZERO,
)
from core.database import ledger_transaction
from core.exceptions import InvalidStateError, ValidationError
from models import Invoice, InvoiceAdjustment
from services import ledger_math
from services.ledger_types import ActivityEvent, AuditEntry, MutationResult
from services.mutation_recorder import complete_mutation
from services.payment_service import PaymentService
from utils.datetime_utils import today
from utils.dict_utils import model_snapshot
from utils.tenant_scope import get_scoped_invoice

logger = logging.getLogger(__name__)


class AdjustmentService:
    """Service for invoice adjustment operations."""

    @staticmethod
    def _validate_reason(reason: Optional[str]) -> str:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Adjustment reason is required")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"reason cannot exceed {MAX_REASON_LENGTH} characters")
        return reason

    @staticmethod
    def _require_open(invoice: Invoice) -> None:
        if invoice.status in TERMINAL_INVOICE_STATUSES:
            raise InvalidStateError(
                f"Cannot adjust a {invoice.status} invoice",
                {"invoice_id": invoice.id, "status": invoice.status}
            )

    @staticmethod
    def _insert(
        db: Session,
        actor: ActorContext,
        invoice: Invoice,
        adjustment_type: str,
        amount,
        reason: str,
        applied_date: Optional[date]
    ) -> InvoiceAdjustment:
        adjustment = InvoiceAdjustment(
            organization_id=invoice.organization_id,
            invoice_id=invoice.id,
            type=adjustment_type,
            amount=amount,
            reason=reason,
            applied_date=applied_date or today(),
            created_by_id=actor.user_id,
        )
        db.add(adjustment)
        return adjustment

    @staticmethod
    def _finish(db: Session, actor: ActorContext, invoice: Invoice, adjustment: InvoiceAdjustment):
        logger.info(
            f"Applied {adjustment.type} adjustment {adjustment.id} of {adjustment.amount} to invoice {invoice.id}"
        )
        return complete_mutation(
            db, actor, adjustment,
            [AuditEntry(
                action_type=AUDIT_ACTION_CREATE,
                entity_type=ENTITY_ADJUSTMENT,
                entity_id=adjustment.id,
                new_value=model_snapshot(adjustment),
                description=f"{adjustment.type} of {adjustment.amount} on invoice {invoice.invoice_number}: {adjustment.reason}",
            )],
            ActivityEvent(
                action="invoice_adjusted",
                entity_type=ENTITY_ADJUSTMENT,
                entity_id=adjustment.id,
                details=f"{adjustment.type} of {adjustment.amount} on invoice {invoice.invoice_number}",
                organization_id=invoice.organization_id,
            ),
        )

    @staticmethod
    def apply_adjustment(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        adjustment_type: str,
        amount: Any,
        reason: str,
        applied_date: Optional[date] = None
    ) -> MutationResult[InvoiceAdjustment]:
        """
        Record an adjustment against an open invoice.

        Corrections may be negative (they then increase the balance); every
        other type must be positive. No type may be zero.
        The invoice state is checked before the input, so a closed invoice
        always reports InvalidStateError.

        Raises:
            ValidationError: Unknown type, bad amount or empty reason
            NotFoundError: Invoice not in scope
            InvalidStateError: Invoice is paid or canceled
        """
        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            AdjustmentService._require_open(invoice)

            if adjustment_type not in ADJUSTMENT_TYPES:
                raise ValidationError(f"Invalid adjustment type. Must be one of: {', '.join(ADJUSTMENT_TYPES)}")
            amount = ledger_math.to_money(amount)
            if amount == ZERO:
                raise ValidationError("Adjustment amount cannot be zero")
            if amount < ZERO and adjustment_type != ADJUSTMENT_CORRECTION:
                raise ValidationError("Only corrections may have a negative amount")
            reason = AdjustmentService._validate_reason(reason)

            adjustment = AdjustmentService._insert(
                db, actor, invoice, adjustment_type, amount, reason, applied_date
            )
            db.flush()

        return AdjustmentService._finish(db, actor, invoice, adjustment)

    @staticmethod
    def write_off(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        reason: str,
        applied_date: Optional[date] = None
    ) -> MutationResult[InvoiceAdjustment]:
        """
        Write off the whole remaining balance of an invoice.

        Raises:
            ValidationError: Empty reason, or nothing left to write off
            InvalidStateError: Invoice is paid or canceled
        """
        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            AdjustmentService._require_open(invoice)
            reason = AdjustmentService._validate_reason(reason)
            balance = PaymentService.compute_balance_due(db, invoice)
            if balance <= ZERO:
                raise ValidationError("Invoice has no remaining balance to write off", {"invoice_id": invoice.id})
            adjustment = AdjustmentService._insert(
                db, actor, invoice, ADJUSTMENT_WRITE_OFF, balance, reason, applied_date
            )
            db.flush()

        return AdjustmentService._finish(db, actor, invoice, adjustment)

    @staticmethod
    def get_adjustments(db: Session, scope: TenantScope, invoice_id: int) -> List[InvoiceAdjustment]:
        invoice = get_scoped_invoice(db, scope, invoice_id)
        return db.query(InvoiceAdjustment).filter(
            InvoiceAdjustment.invoice_id == invoice.id
        ).order_by(InvoiceAdjustment.applied_date, InvoiceAdjustment.id).all()

"""
Service for recording payments and refunds.

Every path that changes what has been paid on an invoice locks the invoice
row first and then recomputes `paid_amount` from the payments table, so two
concurrent payments can never both pass the balance check.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from auth.scope import ActorContext, TenantScope
from core.constants import (
    PAYMENT_METHODS, MAX_REASON_LENGTH,
    INVOICE_STATUS_DRAFT, INVOICE_STATUS_CANCELED,
    AUDIT_ACTION_CREATE, AUDIT_ACTION_UPDATE,
    ENTITY_PAYMENT, ENTITY_INVOICE, ENTITY_INSTALLMENT, ENTITY_PAYMENT_PLAN,
)
from core.database import ledger_transaction
from core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import Invoice, InvoiceAdjustment, Payment
from services import ledger_math
from services.invoice_service import InvoiceService, invoice_snapshot
from services.ledger_types import ActivityEvent, AuditEntry, MutationResult
from services.mutation_recorder import complete_mutation
from services.payment_plan_service import PaymentPlanService
from utils.datetime_utils import today, utc_now
from utils.dict_utils import model_snapshot
from utils.tenant_scope import get_scoped_installment, get_scoped_invoice, get_scoped_payment

logger = logging.getLogger(__name__)


class PaymentService:
    """Service for payment operations."""

    @staticmethod
    def compute_balance_due(db: Session, invoice: Invoice) -> Decimal:
        """Balance still collectible on an invoice, net of adjustments."""
        adjustments = db.query(InvoiceAdjustment).filter(InvoiceAdjustment.invoice_id == invoice.id).all()
        return ledger_math.balance_due(invoice.final_amount, invoice.paid_amount, adjustments)

    @staticmethod
    def balance_due(db: Session, scope: TenantScope, invoice_id: int) -> Decimal:
        invoice = get_scoped_invoice(db, scope, invoice_id)
        return PaymentService.compute_balance_due(db, invoice)

    @staticmethod
    def find_by_idempotency_key(db: Session, organization_id: int, idempotency_key: str) -> Optional[Payment]:
        return db.query(Payment).filter(
            Payment.organization_id == organization_id,
            Payment.idempotency_key == idempotency_key
        ).first()

    @staticmethod
    def ensure_replay_matches(
        payment: Payment,
        invoice_id: int,
        amount: Decimal,
        payment_plan_installment_id: Optional[int]
    ) -> Payment:
        """Reject an idempotency key reused for a different payment."""
        if (
            payment.invoice_id != invoice_id
            or payment.amount != amount
            or payment.payment_plan_installment_id != payment_plan_installment_id
        ):
            raise ConflictError(
                "Idempotency key was already used for a different payment",
                {"payment_id": payment.id, "idempotency_key": payment.idempotency_key}
            )
        return payment

    @staticmethod
    def record_payment(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        amount: Any,
        payment_method: str,
        payment_date: Optional[date] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        payment_plan_installment_id: Optional[int] = None,
        idempotency_key: Optional[str] = None
    ) -> MutationResult[Payment]:
        """
        Record a payment against a sent or partially paid invoice.

        Args:
            db: Database session
            scope: Tenant scope the invoice must be visible in
            actor: Acting user
            invoice_id: Invoice being paid
            amount: Positive amount, at most the balance due
            payment_method: One of PAYMENT_METHODS
            payment_date: Defaults to today
            reference_number: External reference (card slip, transfer id)
            notes: Free-form notes
            payment_plan_installment_id: Installment this payment settles
            idempotency_key: Repeating a key returns the original payment

        Returns:
            MutationResult wrapping the payment

        Raises:
            ValidationError: Non-positive amount, unknown method, over-payment,
                or an installment from another invoice
            NotFoundError: Invoice or installment not in scope
            InvalidStateError: Invoice is draft or canceled, or the
                installment is already paid
        """
        amount = ledger_math.to_money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}")
        paid_on = payment_date or today()

        replayed: Optional[Payment] = None
        entries: List[AuditEntry] = []
        try:
            with ledger_transaction(db):
                invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)

                if idempotency_key:
                    replayed = PaymentService.find_by_idempotency_key(
                        db, invoice.organization_id, idempotency_key
                    )
                if replayed is None:
                    payment = PaymentService._apply_payment(
                        db, scope, actor, invoice, amount, payment_method, paid_on,
                        reference_number, notes, payment_plan_installment_id, idempotency_key, entries
                    )
        except ConflictError:
            if idempotency_key:
                invoice_organization = db.query(Invoice.organization_id).filter(
                    Invoice.id == invoice_id
                ).scalar_subquery()
                existing = scope.apply(db.query(Payment), Payment.organization_id).filter(
                    Payment.organization_id == invoice_organization,
                    Payment.idempotency_key == idempotency_key
                ).first()
                if existing:
                    PaymentService.ensure_replay_matches(existing, invoice_id, amount, payment_plan_installment_id)
                    return MutationResult(value=existing, replayed=True)
            raise

        if replayed is not None:
            PaymentService.ensure_replay_matches(replayed, invoice_id, amount, payment_plan_installment_id)
            logger.info(f"Replaying payment {replayed.id} for idempotency key {idempotency_key}")
            return MutationResult(value=replayed, replayed=True)

        logger.info(f"Recorded payment {payment.id} of {amount} on invoice {invoice.id}")

        return complete_mutation(
            db, actor, payment, entries,
            ActivityEvent(
                action="payment_recorded",
                entity_type=ENTITY_PAYMENT,
                entity_id=payment.id,
                details=f"Payment of {amount} ({payment_method}) on invoice {invoice.invoice_number}",
                organization_id=invoice.organization_id,
            ),
        )

    @staticmethod
    def _apply_payment(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice: Invoice,
        amount: Decimal,
        payment_method: str,
        payment_date: date,
        reference_number: Optional[str],
        notes: Optional[str],
        installment_id: Optional[int],
        idempotency_key: Optional[str],
        entries: List[AuditEntry]
    ) -> Payment:
        """Insert the payment and update invoice and installment; caller holds the invoice lock."""
        if invoice.status in (INVOICE_STATUS_DRAFT, INVOICE_STATUS_CANCELED):
            raise InvalidStateError(
                f"Cannot record a payment on a {invoice.status} invoice",
                {"invoice_id": invoice.id, "status": invoice.status}
            )

        balance = PaymentService.compute_balance_due(db, invoice)
        if amount > balance:
            raise ValidationError(
                f"Payment amount {amount} exceeds balance due {balance}",
                {"invoice_id": invoice.id, "balance_due": str(balance)}
            )

        installment = None
        if installment_id is not None:
            installment = get_scoped_installment(db, scope, installment_id)
            if installment.plan.invoice_id != invoice.id:
                raise ValidationError(
                    "Installment does not belong to this invoice",
                    {"installment_id": installment_id, "invoice_id": invoice.id}
                )
            if installment.is_paid:
                raise InvalidStateError("Installment is already paid", {"installment_id": installment_id})

        previous_invoice = invoice_snapshot(invoice)

        payment = Payment(
            organization_id=invoice.organization_id,
            invoice_id=invoice.id,
            payment_plan_installment_id=installment_id,
            amount=amount,
            payment_date=payment_date,
            payment_method=payment_method,
            reference_number=reference_number,
            notes=notes,
            is_refunded=False,
            created_by_id=actor.user_id,
            idempotency_key=idempotency_key,
        )
        db.add(payment)

        InvoiceService.recalculate_paid_amount(db, invoice)
        InvoiceService.recompute_status(invoice)

        entries.append(AuditEntry(
            action_type=AUDIT_ACTION_CREATE,
            entity_type=ENTITY_PAYMENT,
            entity_id=payment.id,
            new_value=model_snapshot(payment),
            description=f"Recorded {payment_method} payment of {amount} on invoice {invoice.invoice_number}",
        ))
        entries.append(AuditEntry(
            action_type=AUDIT_ACTION_UPDATE,
            entity_type=ENTITY_INVOICE,
            entity_id=invoice.id,
            previous_value=previous_invoice,
            new_value=invoice_snapshot(invoice),
            description=f"Invoice {invoice.invoice_number} paid amount now {invoice.paid_amount}",
        ))

        if installment is not None:
            PaymentService._track_installment_change(
                installment, entries,
                lambda: PaymentPlanService.credit_installment(installment, amount, payment_date),
            )

        return payment

    @staticmethod
    def _track_installment_change(installment, entries: List[AuditEntry], change) -> None:
        """Apply `change` to an installment and audit it and its plan's status."""
        plan = installment.plan
        previous_installment = model_snapshot(installment)
        previous_plan = model_snapshot(plan)

        change()
        plan_changed = PaymentPlanService.refresh_plan_status(plan)

        entries.append(AuditEntry(
            action_type=AUDIT_ACTION_UPDATE,
            entity_type=ENTITY_INSTALLMENT,
            entity_id=installment.id,
            previous_value=previous_installment,
            new_value=model_snapshot(installment),
            description=f"Installment {installment.installment_number} of plan {plan.id} paid amount now {installment.paid_amount}",
        ))
        if plan_changed:
            entries.append(AuditEntry(
                action_type=AUDIT_ACTION_UPDATE,
                entity_type=ENTITY_PAYMENT_PLAN,
                entity_id=plan.id,
                previous_value=previous_plan,
                new_value=model_snapshot(plan),
                description=f"Payment plan {plan.id} is now {plan.status}",
            ))

    @staticmethod
    def refund_payment(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        payment_id: int,
        reason: str
    ) -> MutationResult[Payment]:
        """
        Refund a payment.

        The payment row is kept and flagged; the invoice's paid amount and
        status are recomputed, and any installment credit is reversed.

        Raises:
            ValidationError: If the reason is empty
            NotFoundError: If the payment is missing, out of scope or already refunded
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Refund reason is required")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"reason cannot exceed {MAX_REASON_LENGTH} characters")

        entries: List[AuditEntry] = []
        with ledger_transaction(db):
            # Lock order is invoice then payment, same as record_payment
            unlocked = get_scoped_payment(db, scope, payment_id)
            invoice = get_scoped_invoice(db, scope, unlocked.invoice_id, for_update=True)
            payment = get_scoped_payment(db, scope, payment_id, for_update=True)
            if payment.is_refunded:
                raise NotFoundError("Payment not found or already refunded", {"payment_id": payment_id})

            previous_payment = model_snapshot(payment)
            previous_invoice = invoice_snapshot(invoice)

            payment.is_refunded = True
            payment.refunded_at = utc_now()
            payment.refund_reason = reason

            InvoiceService.recalculate_paid_amount(db, invoice)
            InvoiceService.recompute_status(invoice)

            entries.append(AuditEntry(
                action_type=AUDIT_ACTION_UPDATE,
                entity_type=ENTITY_PAYMENT,
                entity_id=payment.id,
                previous_value=previous_payment,
                new_value=model_snapshot(payment),
                description=f"Refunded payment {payment.id}: {reason}",
            ))
            entries.append(AuditEntry(
                action_type=AUDIT_ACTION_UPDATE,
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                previous_value=previous_invoice,
                new_value=invoice_snapshot(invoice),
                description=f"Invoice {invoice.invoice_number} paid amount now {invoice.paid_amount}",
            ))

            if payment.installment is not None:
                installment = payment.installment
                refunded_amount = ledger_math.to_money(payment.amount)
                PaymentService._track_installment_change(
                    installment, entries,
                    lambda: PaymentPlanService.debit_installment(installment, refunded_amount),
                )

        logger.info(f"Refunded payment {payment.id} on invoice {invoice.id}")

        return complete_mutation(
            db, actor, payment, entries,
            ActivityEvent(
                action="payment_refunded",
                entity_type=ENTITY_PAYMENT,
                entity_id=payment.id,
                details=f"Refund of {payment.amount} on invoice {invoice.invoice_number}: {reason}",
                organization_id=invoice.organization_id,
            ),
        )

    @staticmethod
    def get_payment(db: Session, scope: TenantScope, payment_id: int) -> Payment:
        return get_scoped_payment(db, scope, payment_id)

    @staticmethod
    def get_payments_for_invoice(db: Session, scope: TenantScope, invoice_id: int) -> List[Payment]:
        """All payments of an invoice in scope, refunded ones included, oldest first."""
        invoice = get_scoped_invoice(db, scope, invoice_id)
        return db.query(Payment).filter(
            Payment.invoice_id == invoice.id
        ).order_by(Payment.payment_date, Payment.id).all()

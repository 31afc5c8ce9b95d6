"""
Service for payment plans and their installment schedules.

A plan splits what a patient owes on one invoice into dated installments.
Installments are credited by payments recorded through `PaymentService`;
this module owns the schedule generation, crediting rules and the plan
completion rule.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from auth.scope import ActorContext, TenantScope
from core.constants import (
    ZERO, PLAN_FREQUENCIES, PLAN_FREQUENCY_WEEKLY, PLAN_FREQUENCY_BIWEEKLY, PLAN_FREQUENCY_MONTHLY,
    PLAN_STATUS_ACTIVE, PLAN_STATUS_COMPLETED, PLAN_STATUSES, TERMINAL_INVOICE_STATUSES,
    AUDIT_ACTION_CREATE, ENTITY_PAYMENT_PLAN,
)
from core.database import ledger_transaction
from core.exceptions import InvalidStateError, ValidationError
from models import PaymentPlan, PaymentPlanInstallment, Payment
from services import ledger_math
from services.ledger_types import ActivityEvent, AuditEntry, MutationResult
from services.mutation_recorder import complete_mutation
from utils.datetime_utils import add_days, add_months, utc_now
from utils.dict_utils import model_snapshot
from utils.tenant_scope import get_scoped_installment, get_scoped_invoice, get_scoped_plan

logger = logging.getLogger(__name__)

_FREQUENCY_DAYS = {
    PLAN_FREQUENCY_WEEKLY: 7,
    PLAN_FREQUENCY_BIWEEKLY: 14,
}


def plan_snapshot(plan: PaymentPlan) -> Dict[str, Any]:
    snapshot = model_snapshot(plan)
    snapshot["installments"] = [model_snapshot(installment) for installment in plan.installments]
    return snapshot


class PaymentPlanService:
    """Service for payment plan operations."""

    @staticmethod
    def installment_due_date(start_date: date, frequency: str, index: int) -> date:
        """
        Due date of the installment at zero-based `index`.

        Monthly dates are computed from the start date each time, so a plan
        starting on Jan 31 is due Feb 28/29, Mar 31, Apr 30.
        """
        if frequency == PLAN_FREQUENCY_MONTHLY:
            return add_months(start_date, index)
        if frequency in _FREQUENCY_DAYS:
            return add_days(start_date, _FREQUENCY_DAYS[frequency] * index)
        raise ValidationError(f"Invalid frequency. Must be one of: {', '.join(PLAN_FREQUENCIES)}")

    @staticmethod
    def generate_schedule(
        frequency: str,
        number_of_installments: int,
        installment_amount: Any,
        start_date: date
    ) -> List[Dict[str, Any]]:
        """
        Build an installment schedule.

        Returns:
            List of dicts with installment_number (1-based), due_date and amount
        """
        if frequency not in PLAN_FREQUENCIES:
            raise ValidationError(f"Invalid frequency. Must be one of: {', '.join(PLAN_FREQUENCIES)}")
        if isinstance(number_of_installments, bool) or not isinstance(number_of_installments, int) \
                or number_of_installments < 1:
            raise ValidationError("number_of_installments must be a positive integer")
        amount = ledger_math.to_money(installment_amount, "installment_amount")
        if amount <= 0:
            raise ValidationError("installment_amount must be greater than 0")

        return [
            {
                "installment_number": index + 1,
                "due_date": PaymentPlanService.installment_due_date(start_date, frequency, index),
                "amount": amount,
            }
            for index in range(number_of_installments)
        ]

    @staticmethod
    def _normalize_explicit(explicit_installments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        schedule = []
        for index, installment in enumerate(explicit_installments):
            due_date = installment.get("due_date")
            if not isinstance(due_date, date):
                raise ValidationError(f"Installment {index + 1}: due_date is required")
            amount = ledger_math.to_money(installment.get("amount"), f"Installment {index + 1}: amount")
            if amount <= 0:
                raise ValidationError(f"Installment {index + 1}: amount must be greater than 0")
            schedule.append({"installment_number": index + 1, "due_date": due_date, "amount": amount})
        return schedule

    @staticmethod
    def create_plan(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        frequency: str,
        number_of_installments: int,
        installment_amount: Any,
        start_date: date,
        explicit_installments: Optional[List[Dict[str, Any]]] = None,
        notes: Optional[str] = None
    ) -> MutationResult[PaymentPlan]:
        """
        Create a payment plan for an open invoice.

        Args:
            db: Database session
            scope: Tenant scope the invoice must be visible in
            actor: Acting user
            invoice_id: Invoice the plan pays down
            frequency: weekly, biweekly or monthly
            number_of_installments: How many installments to generate
            installment_amount: Amount of each generated installment
            start_date: Due date of the first installment
            explicit_installments: Dicts with due_date and amount, used as-is
                instead of the generated schedule
            notes: Free-form notes

        Raises:
            ValidationError: Bad frequency, count, amount or explicit schedule
            NotFoundError: Invoice not in scope
            InvalidStateError: Invoice is paid or canceled
        """
        if explicit_installments:
            if frequency not in PLAN_FREQUENCIES:
                raise ValidationError(f"Invalid frequency. Must be one of: {', '.join(PLAN_FREQUENCIES)}")
            schedule = PaymentPlanService._normalize_explicit(explicit_installments)
            if number_of_installments is not None and number_of_installments != len(schedule):
                raise ValidationError("number_of_installments does not match the explicit installments")
        else:
            schedule = PaymentPlanService.generate_schedule(
                frequency, number_of_installments, installment_amount, start_date
            )
        total_amount = sum((entry["amount"] for entry in schedule), ZERO)

        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            if invoice.status in TERMINAL_INVOICE_STATUSES:
                raise InvalidStateError(
                    f"Cannot create a payment plan for a {invoice.status} invoice",
                    {"invoice_id": invoice.id, "status": invoice.status}
                )

            plan = PaymentPlan(
                organization_id=invoice.organization_id,
                invoice_id=invoice.id,
                patient_id=invoice.patient_id,
                total_amount=total_amount,
                frequency=frequency,
                number_of_installments=len(schedule),
                installment_amount=ledger_math.to_money(
                    installment_amount if installment_amount is not None else schedule[0]["amount"],
                    "installment_amount"
                ),
                start_date=start_date,
                status=PLAN_STATUS_ACTIVE,
                notes=notes,
                created_by_id=actor.user_id,
                installments=[
                    PaymentPlanInstallment(paid_amount=ZERO, is_paid=False, **entry)
                    for entry in schedule
                ],
            )
            db.add(plan)

        logger.info(f"Created payment plan {plan.id} with {len(schedule)} installments for invoice {invoice.id}")

        return complete_mutation(
            db, actor, plan,
            [AuditEntry(
                action_type=AUDIT_ACTION_CREATE,
                entity_type=ENTITY_PAYMENT_PLAN,
                entity_id=plan.id,
                new_value=plan_snapshot(plan),
                description=f"Created {frequency} payment plan for invoice {invoice.invoice_number}",
            )],
            ActivityEvent(
                action="payment_plan_created",
                entity_type=ENTITY_PAYMENT_PLAN,
                entity_id=plan.id,
                details=f"{len(schedule)} {frequency} installments totaling {total_amount}",
                organization_id=invoice.organization_id,
            ),
        )

    @staticmethod
    def credit_installment(installment: PaymentPlanInstallment, amount: Decimal, paid_date: date) -> None:
        """Add a payment to an installment; it is paid once the credit covers its amount."""
        installment.paid_amount = ledger_math.to_money(installment.paid_amount or ZERO) + amount
        if installment.paid_amount >= ledger_math.to_money(installment.amount):
            installment.is_paid = True
            installment.paid_date = paid_date

    @staticmethod
    def debit_installment(installment: PaymentPlanInstallment, amount: Decimal) -> None:
        """Reverse a refunded payment's credit on an installment."""
        remaining = ledger_math.to_money(installment.paid_amount or ZERO) - amount
        installment.paid_amount = max(remaining, ZERO)
        if installment.paid_amount < ledger_math.to_money(installment.amount):
            installment.is_paid = False
            installment.paid_date = None

    @staticmethod
    def refresh_plan_status(plan: PaymentPlan) -> bool:
        """
        Apply the completion rule: completed iff every installment is paid.

        Returns:
            True if the plan status changed
        """
        all_paid = bool(plan.installments) and all(installment.is_paid for installment in plan.installments)
        if all_paid and plan.status != PLAN_STATUS_COMPLETED:
            plan.status = PLAN_STATUS_COMPLETED
            plan.completed_at = utc_now()
            logger.info(f"Payment plan {plan.id} completed")
            return True
        if not all_paid and plan.status == PLAN_STATUS_COMPLETED:
            plan.status = PLAN_STATUS_ACTIVE
            plan.completed_at = None
            logger.info(f"Payment plan {plan.id} reopened")
            return True
        return False

    @staticmethod
    def pay_installment(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        plan_id: int,
        installment_id: int,
        payment_method: str,
        amount: Any = None,
        payment_date: Optional[date] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> MutationResult[Payment]:
        """
        Pay an installment of a plan.

        Records a payment on the plan's invoice linked to the installment.
        `amount` defaults to what is still owed on the installment.
        """
        # Import here to avoid circular import
        from services.payment_service import PaymentService

        plan = get_scoped_plan(db, scope, plan_id)
        installment = get_scoped_installment(db, scope, installment_id, plan_id=plan.id)
        if idempotency_key:
            replayed = PaymentService.find_by_idempotency_key(db, plan.organization_id, idempotency_key)
            if replayed is not None:
                requested = replayed.amount if amount is None else ledger_math.to_money(amount)
                PaymentService.ensure_replay_matches(replayed, plan.invoice_id, requested, installment.id)
                return MutationResult(value=replayed, replayed=True)
        if installment.is_paid:
            raise InvalidStateError("Installment is already paid", {"installment_id": installment.id})
        if amount is None:
            amount = ledger_math.to_money(installment.amount) - ledger_math.to_money(installment.paid_amount or ZERO)

        return PaymentService.record_payment(
            db,
            scope=scope,
            actor=actor,
            invoice_id=plan.invoice_id,
            amount=amount,
            payment_method=payment_method,
            payment_date=payment_date,
            reference_number=reference_number,
            notes=notes,
            payment_plan_installment_id=installment.id,
            idempotency_key=idempotency_key,
        )

    @staticmethod
    def get_plan(db: Session, scope: TenantScope, plan_id: int) -> PaymentPlan:
        return get_scoped_plan(db, scope, plan_id)

    @staticmethod
    def get_installments(db: Session, scope: TenantScope, plan_id: int) -> List[PaymentPlanInstallment]:
        plan = get_scoped_plan(db, scope, plan_id)
        return db.query(PaymentPlanInstallment).filter(
            PaymentPlanInstallment.payment_plan_id == plan.id
        ).order_by(PaymentPlanInstallment.installment_number).all()

    @staticmethod
    def list_plans(
        db: Session,
        scope: TenantScope,
        invoice_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        status: Optional[str] = None
    ) -> List[PaymentPlan]:
        """List payment plans in scope, newest first."""
        query = scope.apply(db.query(PaymentPlan), PaymentPlan.organization_id)
        if invoice_id is not None:
            query = query.filter(PaymentPlan.invoice_id == invoice_id)
        if patient_id is not None:
            query = query.filter(PaymentPlan.patient_id == patient_id)
        if status is not None:
            if status not in PLAN_STATUSES:
                raise ValidationError(f"Invalid plan status. Must be one of: {', '.join(PLAN_STATUSES)}")
            query = query.filter(PaymentPlan.status == status)
        return query.order_by(PaymentPlan.created_at.desc(), PaymentPlan.id.desc()).all()

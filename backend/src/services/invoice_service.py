"""
Service for managing invoices.

Handles invoice creation, draft editing (items and discount), the
draft → sent → partial/paid lifecycle, voiding, and scoped reads. Money math
lives in `services.ledger_math`; this module is about persistence, locking
and lifecycle rules.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from auth.scope import ActorContext, TenantScope
from core.config import INVOICE_NUMBER_MAX_ATTEMPTS
from core.constants import (
    ZERO,
    INVOICE_STATUS_DRAFT, INVOICE_STATUS_SENT, INVOICE_STATUS_PARTIAL, INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE, INVOICE_STATUS_CANCELED, INVOICE_STATUSES, TERMINAL_INVOICE_STATUSES,
    AUDIT_ACTION_CREATE, AUDIT_ACTION_UPDATE, AUDIT_ACTION_DELETE,
    ENTITY_INVOICE, ENTITY_INVOICE_ITEM, MAX_REASON_LENGTH,
)
from core.database import ledger_transaction
from core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from core.sentinels import MISSING
from models import Invoice, InvoiceItem, Payment
from services import ledger_math
from services.invoice_number_service import InvoiceNumberGenerator, InvoiceNumberService
from services.ledger_types import ActivityEvent, AuditEntry, MutationResult
from services.mutation_recorder import complete_mutation
from utils.datetime_utils import today, utc_now
from utils.dict_utils import model_snapshot
from utils.tenant_scope import (
    get_scoped_invoice, get_scoped_item, get_scoped_organization, invoice_query,
)

logger = logging.getLogger(__name__)


def invoice_snapshot(invoice: Invoice) -> Dict[str, Any]:
    """Audit snapshot of an invoice including its items."""
    snapshot = model_snapshot(invoice)
    snapshot["items"] = [model_snapshot(item) for item in invoice.items]
    return snapshot


def validate_patient_id(patient_id: Any) -> int:
    if isinstance(patient_id, bool) or not isinstance(patient_id, int) or patient_id < 1:
        raise ValidationError("patient_id must be a positive integer")
    return patient_id


class InvoiceService:
    """Service for invoice operations."""

    @staticmethod
    def find_by_idempotency_key(db: Session, organization_id: int, idempotency_key: str) -> Optional[Invoice]:
        return db.query(Invoice).filter(
            Invoice.organization_id == organization_id,
            Invoice.idempotency_key == idempotency_key
        ).first()

    @staticmethod
    def create_invoice(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        patient_id: int,
        items: List[Dict[str, Any]],
        discount_type: Optional[str] = None,
        discount_value: Any = 0,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        issued_date: Optional[date] = None,
        idempotency_key: Optional[str] = None,
        number_generator: Optional[InvoiceNumberGenerator] = None
    ) -> MutationResult[Invoice]:
        """
        Create a draft invoice with its line items.

        Args:
            db: Database session
            scope: Tenant scope; the invoice is stamped with its tenant
            actor: Acting user, recorded as creator and in the audit trail
            patient_id: External patient reference
            items: Dicts with description, quantity and unit_price
            discount_type: "none", "percentage" or "value"
            discount_value: Percentage (0-100) or flat amount
            due_date: Optional due date, not before the issue date
            notes: Free-form notes
            issued_date: Defaults to today
            idempotency_key: Repeating a key returns the original invoice
            number_generator: Override for invoice number candidates

        Returns:
            MutationResult wrapping the created (or replayed) invoice

        Raises:
            ValidationError: If any input is malformed
            NotFoundError: If the scope's organization does not exist
            InvalidStateError: If the organization is inactive
            ConflictError: If no unique invoice number could be allocated
        """
        organization = get_scoped_organization(db, scope)
        if not organization.is_active:
            raise InvalidStateError("Organization is inactive", {"organization_id": organization.id})

        if idempotency_key:
            existing = InvoiceService.find_by_idempotency_key(db, organization.id, idempotency_key)
            if existing:
                logger.info(f"Replaying invoice {existing.id} for idempotency key {idempotency_key}")
                return MutationResult(value=existing, replayed=True)

        validate_patient_id(patient_id)
        if not items:
            raise ValidationError("Invoice must have at least one item")
        normalized_items = [ledger_math.validate_item(item, index) for index, item in enumerate(items)]
        normalized_type, normalized_value = ledger_math.validate_discount(discount_type, discount_value)
        total_amount, final_amount = ledger_math.compute_totals(
            normalized_items, normalized_type, normalized_value
        )

        issued = issued_date or today()
        if due_date is not None and due_date < issued:
            raise ValidationError("due_date cannot be before issued_date")

        organization_id = organization.id
        for attempt in range(1, INVOICE_NUMBER_MAX_ATTEMPTS + 1):
            try:
                with ledger_transaction(db):
                    invoice_number = InvoiceNumberService.allocate(db, organization_id, number_generator)
                    invoice = Invoice(
                        organization_id=organization_id,
                        patient_id=patient_id,
                        invoice_number=invoice_number,
                        status=INVOICE_STATUS_DRAFT,
                        total_amount=total_amount,
                        discount_type=normalized_type,
                        discount_value=normalized_value,
                        final_amount=final_amount,
                        paid_amount=ZERO,
                        issued_date=issued,
                        due_date=due_date,
                        notes=notes,
                        created_by_id=actor.user_id,
                        idempotency_key=idempotency_key,
                        items=[InvoiceItem(**item) for item in normalized_items],
                    )
                    db.add(invoice)
                break
            except ConflictError as e:
                if idempotency_key:
                    existing = InvoiceService.find_by_idempotency_key(db, organization_id, idempotency_key)
                    if existing:
                        return MutationResult(value=existing, replayed=True)
                # A concurrent create took the number between the check and the insert
                if attempt == INVOICE_NUMBER_MAX_ATTEMPTS or not InvoiceNumberService.is_number_collision(e.__cause__):
                    raise
                logger.info(
                    f"Invoice number {invoice_number} taken concurrently in organization {organization_id}, "
                    f"retrying (attempt {attempt}/{INVOICE_NUMBER_MAX_ATTEMPTS})"
                )

        logger.info(f"Created invoice {invoice.invoice_number} (id={invoice.id}) for organization {organization_id}")

        return complete_mutation(
            db, actor, invoice,
            [AuditEntry(
                action_type=AUDIT_ACTION_CREATE,
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                new_value=invoice_snapshot(invoice),
                description=f"Created invoice {invoice.invoice_number}",
            )],
            ActivityEvent(
                action="invoice_created",
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                details=f"Invoice {invoice.invoice_number} created for {final_amount}",
                organization_id=organization_id,
            ),
        )

    @staticmethod
    def recalculate_paid_amount(db: Session, invoice: Invoice) -> Decimal:
        """
        Set `invoice.paid_amount` to the sum of its non-refunded payments.

        Pending session changes are flushed first so payments added in the
        current transaction are counted.
        """
        db.flush()
        paid = db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
            Payment.invoice_id == invoice.id,
            Payment.is_refunded.is_(False)
        ).scalar()
        invoice.paid_amount = ledger_math.to_money(paid)
        return invoice.paid_amount

    @staticmethod
    def recompute_status(invoice: Invoice) -> str:
        """Re-derive the persisted status from paid vs final amount."""
        invoice.status = ledger_math.derive_status(
            invoice.status,
            ledger_math.to_money(invoice.paid_amount),
            ledger_math.to_money(invoice.final_amount),
        )
        return invoice.status

    @staticmethod
    def refresh_totals(db: Session, invoice: Invoice) -> None:
        """Recompute totals, paid amount and status of a locked invoice."""
        total_amount, final_amount = ledger_math.compute_totals(
            invoice.items, invoice.discount_type, ledger_math.to_money(invoice.discount_value)
        )
        invoice.total_amount = total_amount
        invoice.final_amount = final_amount
        InvoiceService.recalculate_paid_amount(db, invoice)
        InvoiceService.recompute_status(invoice)

    @staticmethod
    def _require_draft(invoice: Invoice, operation: str) -> None:
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise InvalidStateError(
                f"Cannot {operation}: invoice is {invoice.status}, only draft invoices can be edited",
                {"invoice_id": invoice.id, "status": invoice.status}
            )

    @staticmethod
    def add_item(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        description: str,
        quantity: int,
        unit_price: Any
    ) -> MutationResult[Invoice]:
        """Add a line item to a draft invoice and recompute its totals."""
        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            InvoiceService._require_draft(invoice, "add item")
            previous = invoice_snapshot(invoice)

            normalized = ledger_math.validate_item(
                {"description": description, "quantity": quantity, "unit_price": unit_price},
                len(invoice.items)
            )
            normalized["display_order"] = max((item.display_order for item in invoice.items), default=-1) + 1
            item = InvoiceItem(**normalized)
            invoice.items.append(item)
            InvoiceService.refresh_totals(db, invoice)

        return complete_mutation(
            db, actor, invoice,
            [
                AuditEntry(
                    action_type=AUDIT_ACTION_CREATE,
                    entity_type=ENTITY_INVOICE_ITEM,
                    entity_id=item.id,
                    new_value=model_snapshot(item),
                    description=f"Added item to invoice {invoice.invoice_number}",
                ),
                AuditEntry(
                    action_type=AUDIT_ACTION_UPDATE,
                    entity_type=ENTITY_INVOICE,
                    entity_id=invoice.id,
                    previous_value=previous,
                    new_value=invoice_snapshot(invoice),
                    description=f"Recalculated totals for invoice {invoice.invoice_number}",
                ),
            ],
        )

    @staticmethod
    def remove_item(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        item_id: int
    ) -> MutationResult[Invoice]:
        """
        Remove a line item from a draft invoice.

        Raises:
            ValidationError: If it is the invoice's last item
        """
        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            InvoiceService._require_draft(invoice, "remove item")
            item = get_scoped_item(db, scope, invoice, item_id)
            if len(invoice.items) <= 1:
                raise ValidationError("Invoice must keep at least one item", {"invoice_id": invoice.id})

            previous = invoice_snapshot(invoice)
            removed = model_snapshot(item)
            invoice.items.remove(item)
            InvoiceService.refresh_totals(db, invoice)

        return complete_mutation(
            db, actor, invoice,
            [
                AuditEntry(
                    action_type=AUDIT_ACTION_DELETE,
                    entity_type=ENTITY_INVOICE_ITEM,
                    entity_id=item_id,
                    previous_value=removed,
                    description=f"Removed item from invoice {invoice.invoice_number}",
                ),
                AuditEntry(
                    action_type=AUDIT_ACTION_UPDATE,
                    entity_type=ENTITY_INVOICE,
                    entity_id=invoice.id,
                    previous_value=previous,
                    new_value=invoice_snapshot(invoice),
                    description=f"Recalculated totals for invoice {invoice.invoice_number}",
                ),
            ],
        )

    @staticmethod
    def update_discount(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        discount_type: Optional[str],
        discount_value: Any = 0
    ) -> MutationResult[Invoice]:
        """Change the discount of a draft invoice."""
        normalized_type, normalized_value = ledger_math.validate_discount(discount_type, discount_value)

        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            InvoiceService._require_draft(invoice, "change discount")
            previous = invoice_snapshot(invoice)
            invoice.discount_type = normalized_type
            invoice.discount_value = normalized_value
            InvoiceService.refresh_totals(db, invoice)

        return complete_mutation(
            db, actor, invoice,
            [AuditEntry(
                action_type=AUDIT_ACTION_UPDATE,
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                previous_value=previous,
                new_value=invoice_snapshot(invoice),
                description=f"Changed discount on invoice {invoice.invoice_number}",
            )],
        )

    @staticmethod
    def update_details(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        due_date: Any = MISSING,
        notes: Any = MISSING
    ) -> MutationResult[Invoice]:
        """
        Update the due date and/or notes of an open invoice.

        Omitted arguments are left unchanged; an explicit None clears the field.
        """
        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            if invoice.status in TERMINAL_INVOICE_STATUSES:
                raise InvalidStateError(
                    f"Cannot update a {invoice.status} invoice",
                    {"invoice_id": invoice.id, "status": invoice.status}
                )
            previous = invoice_snapshot(invoice)

            if due_date is not MISSING:
                if due_date is not None and due_date < invoice.issued_date:
                    raise ValidationError("due_date cannot be before issued_date")
                invoice.due_date = due_date
            if notes is not MISSING:
                invoice.notes = notes

        return complete_mutation(
            db, actor, invoice,
            [AuditEntry(
                action_type=AUDIT_ACTION_UPDATE,
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                previous_value=previous,
                new_value=invoice_snapshot(invoice),
                description=f"Updated details of invoice {invoice.invoice_number}",
            )],
        )

    @staticmethod
    def send_invoice(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int
    ) -> MutationResult[Invoice]:
        """Move a draft invoice to sent."""
        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            if invoice.status != INVOICE_STATUS_DRAFT:
                raise InvalidStateError(
                    f"Only draft invoices can be sent (invoice is {invoice.status})",
                    {"invoice_id": invoice.id, "status": invoice.status}
                )
            previous = invoice_snapshot(invoice)
            invoice.status = INVOICE_STATUS_SENT
            invoice.sent_at = utc_now()

        logger.info(f"Sent invoice {invoice.invoice_number} (id={invoice.id})")

        return complete_mutation(
            db, actor, invoice,
            [AuditEntry(
                action_type=AUDIT_ACTION_UPDATE,
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                previous_value=previous,
                new_value=invoice_snapshot(invoice),
                description=f"Sent invoice {invoice.invoice_number}",
            )],
            ActivityEvent(
                action="invoice_sent",
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                details=f"Invoice {invoice.invoice_number} sent",
                organization_id=invoice.organization_id,
            ),
        )

    @staticmethod
    def void_invoice(
        db: Session,
        scope: TenantScope,
        actor: ActorContext,
        invoice_id: int,
        reason: Optional[str] = None
    ) -> MutationResult[Invoice]:
        """
        Cancel an invoice.

        Raises:
            InvalidStateError: If the invoice is paid or already canceled
        """
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"reason cannot exceed {MAX_REASON_LENGTH} characters")

        with ledger_transaction(db):
            invoice = get_scoped_invoice(db, scope, invoice_id, for_update=True)
            if invoice.status == INVOICE_STATUS_PAID:
                raise InvalidStateError("Cannot void a paid invoice", {"invoice_id": invoice.id})
            if invoice.status == INVOICE_STATUS_CANCELED:
                raise InvalidStateError("Invoice is already canceled", {"invoice_id": invoice.id})

            previous = invoice_snapshot(invoice)
            invoice.status = INVOICE_STATUS_CANCELED
            invoice.canceled_at = utc_now()
            invoice.cancel_reason = reason

        logger.info(f"Voided invoice {invoice.invoice_number} (id={invoice.id})")

        return complete_mutation(
            db, actor, invoice,
            [AuditEntry(
                action_type=AUDIT_ACTION_UPDATE,
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                previous_value=previous,
                new_value=invoice_snapshot(invoice),
                description=f"Voided invoice {invoice.invoice_number}" + (f": {reason}" if reason else ""),
            )],
            ActivityEvent(
                action="invoice_voided",
                entity_type=ENTITY_INVOICE,
                entity_id=invoice.id,
                details=reason,
                organization_id=invoice.organization_id,
            ),
        )

    @staticmethod
    def effective_status(invoice: Invoice, as_of: Optional[date] = None) -> str:
        """Status shown to users; overdue is derived, never stored."""
        return ledger_math.effective_status(invoice.status, invoice.due_date, as_of or today())

    @staticmethod
    def get_invoice(db: Session, scope: TenantScope, invoice_id: int) -> Invoice:
        return get_scoped_invoice(db, scope, invoice_id)

    @staticmethod
    def get_invoice_with_items(db: Session, scope: TenantScope, invoice_id: int) -> Invoice:
        """Fetch an invoice with items, payments and adjustments eagerly loaded."""
        invoice = invoice_query(db, scope).options(
            selectinload(Invoice.items),
            selectinload(Invoice.payments),
            selectinload(Invoice.adjustments),
        ).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError("Invoice not found", {"invoice_id": invoice_id})
        return invoice

    @staticmethod
    def list_invoices(
        db: Session,
        scope: TenantScope,
        patient_id: Optional[int] = None,
        status: Optional[str] = None,
        as_of: Optional[date] = None
    ) -> List[Invoice]:
        """
        List invoices in scope, newest first.

        Filtering by "overdue" matches sent/partial invoices past their due
        date; filtering by "sent" or "partial" still includes overdue ones.
        """
        query = invoice_query(db, scope)
        if patient_id is not None:
            query = query.filter(Invoice.patient_id == patient_id)
        if status is not None:
            if status not in INVOICE_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(INVOICE_STATUSES)}")
            if status == INVOICE_STATUS_OVERDUE:
                query = query.filter(
                    Invoice.status.in_((INVOICE_STATUS_SENT, INVOICE_STATUS_PARTIAL)),
                    Invoice.due_date.isnot(None),
                    Invoice.due_date < (as_of or today()),
                )
            else:
                query = query.filter(Invoice.status == status)
        return query.order_by(Invoice.issued_date.desc(), Invoice.id.desc()).all()

"""
Tenant-scoped lookups for ledger rows.

These helpers are the only way the service layer fetches ledger rows by id.
Each one requires a `TenantScope`, so there is no unscoped variant a
tenant-level code path could reach by accident. Rows outside the scope are
reported exactly like missing rows.
"""

from typing import Optional

from sqlalchemy.orm import Session

from auth.scope import TenantScope
from core.exceptions import NotFoundError
from models import (
    Invoice, InvoiceItem, Payment, PaymentPlan, PaymentPlanInstallment, Organization,
)


def invoice_query(db: Session, scope: TenantScope):
    """Base invoice query restricted to the scope's tenant."""
    return scope.apply(db.query(Invoice), Invoice.organization_id)


def get_scoped_invoice(
    db: Session,
    scope: TenantScope,
    invoice_id: int,
    for_update: bool = False
) -> Invoice:
    """
    Fetch an invoice visible in `scope`.

    Args:
        for_update: Lock the invoice row (SELECT ... FOR UPDATE) so concurrent
            read-modify-write of its totals serialize.

    Raises:
        NotFoundError: If the invoice is missing or belongs to another tenant.
    """
    query = invoice_query(db, scope).filter(Invoice.id == invoice_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    invoice = query.first()
    if not invoice:
        raise NotFoundError("Invoice not found", {"invoice_id": invoice_id})
    return invoice


def get_scoped_item(db: Session, scope: TenantScope, invoice: Invoice, item_id: int) -> InvoiceItem:
    """Fetch an item that belongs to an already scoped invoice."""
    item = db.query(InvoiceItem).filter(
        InvoiceItem.id == item_id,
        InvoiceItem.invoice_id == invoice.id
    ).first()
    if not item or not scope.allows(invoice.organization_id):
        raise NotFoundError("Invoice item not found", {"item_id": item_id})
    return item


def get_scoped_payment(db: Session, scope: TenantScope, payment_id: int, for_update: bool = False) -> Payment:
    """Fetch a payment visible in `scope`."""
    query = scope.apply(db.query(Payment), Payment.organization_id).filter(Payment.id == payment_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    payment = query.first()
    if not payment:
        raise NotFoundError("Payment not found", {"payment_id": payment_id})
    return payment


def get_scoped_plan(db: Session, scope: TenantScope, plan_id: int, for_update: bool = False) -> PaymentPlan:
    """Fetch a payment plan visible in `scope`."""
    query = scope.apply(db.query(PaymentPlan), PaymentPlan.organization_id).filter(PaymentPlan.id == plan_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    plan = query.first()
    if not plan:
        raise NotFoundError("Payment plan not found", {"plan_id": plan_id})
    return plan


def get_scoped_installment(
    db: Session,
    scope: TenantScope,
    installment_id: int,
    plan_id: Optional[int] = None
) -> PaymentPlanInstallment:
    """
    Fetch an installment through its plan's tenant.

    Args:
        plan_id: When given, the installment must also belong to this plan.
    """
    query = db.query(PaymentPlanInstallment).join(
        PaymentPlan, PaymentPlanInstallment.payment_plan_id == PaymentPlan.id
    ).filter(PaymentPlanInstallment.id == installment_id)
    query = scope.apply(query, PaymentPlan.organization_id)
    if plan_id is not None:
        query = query.filter(PaymentPlanInstallment.payment_plan_id == plan_id)
    installment = query.first()
    if not installment:
        raise NotFoundError("Installment not found", {"installment_id": installment_id})
    return installment


def get_scoped_organization(db: Session, scope: TenantScope) -> Organization:
    """Organization that new rows will be stamped with."""
    organization_id = scope.require_tenant()
    organization = db.query(Organization).filter(Organization.id == organization_id).first()
    if not organization:
        raise NotFoundError("Organization not found", {"organization_id": organization_id})
    return organization

"""
Invoice and invoice item models.

An invoice is created as a draft, becomes immutable in its items and discount
once sent, and then moves between sent/partial/paid as payments are recorded
or refunded. `final_amount` and `paid_amount` are stored for fast reads but are
always recomputed from items, discount and payments inside the same
transaction that changes them.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String, ForeignKey, TIMESTAMP, Date, Integer, Numeric, Text, Index,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from core.constants import MAX_STRING_LENGTH, MAX_REASON_LENGTH


class Invoice(Base):
    """
    Invoice entity billed to a patient by an organization.

    Status lifecycle:
    - draft -> sent (explicit send)
    - sent -> partial -> paid (driven by payment totals, reversible by refunds)
    - draft|sent|partial -> canceled (explicit void)
    - overdue is derived from due_date at read time, never stored
    """

    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the invoice."""

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"))
    """Tenant that issued the invoice."""

    patient_id: Mapped[int] = mapped_column(Integer)
    """Patient billed (owned by the patient records collaborator)."""

    invoice_number: Mapped[str] = mapped_column(String(50))
    """Generated invoice number, unique per organization."""

    status: Mapped[str] = mapped_column(String(20), default="draft")
    """One of draft, sent, partial, paid, canceled."""

    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """Sum of item totals."""

    discount_type: Mapped[str] = mapped_column(String(20), default="none")
    """none, percentage or value."""

    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    """Percentage (0-100) or flat value depending on discount_type."""

    final_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """total_amount minus discount, never negative."""

    paid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    """Sum of non-refunded payments."""

    issued_date: Mapped[date] = mapped_column(Date)
    """Business date the invoice was issued."""

    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    """Payment due date; drives the derived overdue status."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """User who created the invoice."""

    sent_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    canceled_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    cancel_reason: Mapped[Optional[str]] = mapped_column(String(MAX_REASON_LENGTH), nullable=True)

    idempotency_key: Mapped[Optional[str]] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)
    """Client-supplied key that makes invoice creation safe to retry."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    # Relationships
    organization = relationship("Organization", back_populates="invoices")

    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.display_order",
    )

    payments = relationship("Payment", back_populates="invoice", order_by="Payment.id")

    adjustments = relationship("InvoiceAdjustment", back_populates="invoice", order_by="InvoiceAdjustment.id")

    __table_args__ = (
        UniqueConstraint('organization_id', 'invoice_number', name='uq_invoices_organization_number'),
        UniqueConstraint('organization_id', 'idempotency_key', name='uq_invoices_organization_idempotency_key'),
        Index('idx_invoices_organization', 'organization_id'),
        Index('idx_invoices_organization_patient', 'organization_id', 'patient_id'),
        Index('idx_invoices_status', 'status'),
        CheckConstraint('final_amount >= 0', name='chk_invoices_final_amount_non_negative'),
        CheckConstraint('total_amount >= 0', name='chk_invoices_total_amount_non_negative'),
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number} status={self.status}>"


class InvoiceItem(Base):
    """Line item owned exclusively by one invoice; editable only while draft."""

    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"))

    description: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))

    quantity: Mapped[int] = mapped_column(Integer, default=1)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """quantity * unit_price."""

    display_order: Mapped[int] = mapped_column(Integer, default=0)

    invoice = relationship("Invoice", back_populates="items")

    __table_args__ = (
        Index('idx_invoice_items_invoice', 'invoice_id'),
        CheckConstraint('quantity >= 1', name='chk_invoice_items_quantity_positive'),
        CheckConstraint('unit_price >= 0', name='chk_invoice_items_unit_price_non_negative'),
    )

"""
Payment model.

Payments are never deleted. A refund flips `is_refunded` and keeps the
original row so the audit trail stays continuous.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String, ForeignKey, TIMESTAMP, Date, Boolean, Integer, Numeric, Text, Index,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from core.constants import MAX_STRING_LENGTH, MAX_REASON_LENGTH


class Payment(Base):
    """Money received against an invoice, optionally tied to a plan installment."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"))
    """Copied from the invoice so payments can be scoped without a join."""

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="RESTRICT"))

    payment_plan_installment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payment_plan_installments.id", ondelete="RESTRICT"),
        nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    payment_date: Mapped[date] = mapped_column(Date)

    payment_method: Mapped[str] = mapped_column(String(20))
    """cash, card, bank_transfer, insurance or other."""

    reference_number: Mapped[Optional[str]] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_refunded: Mapped[bool] = mapped_column(Boolean, default=False)

    refunded_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    refund_reason: Mapped[Optional[str]] = mapped_column(String(MAX_REASON_LENGTH), nullable=True)

    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    idempotency_key: Mapped[Optional[str]] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    invoice = relationship("Invoice", back_populates="payments")

    installment = relationship("PaymentPlanInstallment", back_populates="payments")

    __table_args__ = (
        UniqueConstraint('organization_id', 'idempotency_key', name='uq_payments_organization_idempotency_key'),
        Index('idx_payments_invoice', 'invoice_id'),
        Index('idx_payments_organization', 'organization_id'),
        Index('idx_payments_installment', 'payment_plan_installment_id'),
        CheckConstraint('amount > 0', name='chk_payments_amount_positive'),
    )

    def __repr__(self) -> str:
        return f"<Payment id={self.id} invoice_id={self.invoice_id} amount={self.amount} refunded={self.is_refunded}>"

"""
Payment plan and installment models.

A plan splits an invoice's balance into scheduled installments. Its status is
derived: `completed` exactly when every installment is paid.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String, ForeignKey, TIMESTAMP, Date, Boolean, Integer, Numeric, Text, Index,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class PaymentPlan(Base):
    """Installment schedule for an invoice."""

    __tablename__ = "payment_plans"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"))

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="RESTRICT"))

    patient_id: Mapped[int] = mapped_column(Integer)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """Sum of all installment amounts."""

    frequency: Mapped[str] = mapped_column(String(20))
    """weekly, biweekly or monthly."""

    number_of_installments: Mapped[int] = mapped_column(Integer)

    installment_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """Default amount of each generated installment."""

    start_date: Mapped[date] = mapped_column(Date)

    status: Mapped[str] = mapped_column(String(20), default="active")
    """active or completed."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    installments: Mapped[List["PaymentPlanInstallment"]] = relationship(
        "PaymentPlanInstallment",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PaymentPlanInstallment.installment_number",
    )

    invoice = relationship("Invoice")

    __table_args__ = (
        Index('idx_payment_plans_organization', 'organization_id'),
        Index('idx_payment_plans_invoice', 'invoice_id'),
        CheckConstraint('number_of_installments >= 1', name='chk_payment_plans_installments_positive'),
    )

    def __repr__(self) -> str:
        return f"<PaymentPlan id={self.id} invoice_id={self.invoice_id} status={self.status}>"


class PaymentPlanInstallment(Base):
    """One scheduled payment obligation within a plan."""

    __tablename__ = "payment_plan_installments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    payment_plan_id: Mapped[int] = mapped_column(ForeignKey("payment_plans.id", ondelete="CASCADE"))

    installment_number: Mapped[int] = mapped_column(Integer)
    """1..N, unique within the plan."""

    due_date: Mapped[date] = mapped_column(Date)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    paid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    """Sum of non-refunded payments credited to this installment."""

    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)

    paid_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    plan = relationship("PaymentPlan", back_populates="installments")

    payments = relationship("Payment", back_populates="installment")

    __table_args__ = (
        UniqueConstraint('payment_plan_id', 'installment_number', name='uq_installments_plan_number'),
        Index('idx_installments_plan', 'payment_plan_id'),
        CheckConstraint('amount > 0', name='chk_installments_amount_positive'),
    )

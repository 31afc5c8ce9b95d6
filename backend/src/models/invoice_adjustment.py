"""
Invoice adjustment model.

Adjustments (write-offs, discounts, corrections, fees) annotate an invoice's
collectible balance without touching its final amount. They are immutable
once created.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, ForeignKey, TIMESTAMP, Date, Integer, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from core.constants import MAX_REASON_LENGTH


class InvoiceAdjustment(Base):
    """Ledger annotation that changes how much of an invoice is still collectible."""

    __tablename__ = "invoice_adjustments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"))

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="RESTRICT"))

    type: Mapped[str] = mapped_column(String(20))
    """write_off, discount, correction or fee."""

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """Recorded verbatim. Only corrections may be negative."""

    reason: Mapped[str] = mapped_column(String(MAX_REASON_LENGTH))

    applied_date: Mapped[date] = mapped_column(Date)

    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    invoice = relationship("Invoice", back_populates="adjustments")

    __table_args__ = (
        Index('idx_invoice_adjustments_invoice', 'invoice_id'),
        Index('idx_invoice_adjustments_organization', 'organization_id'),
    )

    def __repr__(self) -> str:
        return f"<InvoiceAdjustment id={self.id} type={self.type} amount={self.amount}>"

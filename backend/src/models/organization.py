"""
Organization model representing a clinic tenant.

An organization owns every ledger row, directly through an
`organization_id` column or transitively through its parent row.
Organizations are created once at signup and never deleted by the ledger.
"""

from datetime import datetime

from sqlalchemy import String, TIMESTAMP, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from core.constants import MAX_STRING_LENGTH


class Organization(Base):
    """Tenant (clinic account) that partitions all financial data."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the organization."""

    name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))
    """Display name of the clinic."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    """Inactive organizations keep their history but cannot issue new invoices."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    """Timestamp when the organization was created."""

    invoices = relationship("Invoice", back_populates="organization")
    """Invoices issued by this organization."""

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name}>"

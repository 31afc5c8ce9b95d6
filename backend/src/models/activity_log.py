"""
Activity log model.

Human-readable event feed for dashboards. Unlike the audit log this feed is
best-effort: entries may be missing if a write fails, and nothing relies on
it for financial integrity.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, TIMESTAMP, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class ActivityLog(Base):
    """One line in the organization's activity feed."""

    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    organization_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    action: Mapped[str] = mapped_column(String(50))
    """Short verb, e.g. "invoice_created", "payment_recorded"."""

    entity_type: Mapped[str] = mapped_column(String(50))

    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    __table_args__ = (
        Index('idx_activity_log_organization_created', 'organization_id', 'created_at'),
    )

"""
Immutable audit log model.

Every mutating financial operation appends one or more rows here with
before/after snapshots. Rows are never updated or deleted: the ORM listeners
below reject it in application code, and the baseline migration installs a
PostgreSQL trigger that rejects it at the database level.

The table has no organization column; tenant-level readers
narrow entries down by the tenant-owned entity ids they reference.
"""

from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import String, TIMESTAMP, Integer, Text, JSON, Index, event
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base
from core.exceptions import ImmutableAuditLogError


class AuditLog(Base):
    """Append-only record of one financial state change."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Acting user; null for system jobs."""

    user_role: Mapped[str] = mapped_column(String(50))

    action_type: Mapped[str] = mapped_column(String(10))
    """CREATE, UPDATE or DELETE."""

    entity_type: Mapped[str] = mapped_column(String(50))

    entity_id: Mapped[str] = mapped_column(String(100))
    """Primary key of the changed row, stored as string."""

    previous_value: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    """Snapshot before the change (UPDATE/DELETE)."""

    new_value: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    """Snapshot after the change (CREATE/UPDATE)."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv4/IPv6

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    __table_args__ = (
        Index('idx_audit_logs_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_logs_user', 'user_id'),
        Index('idx_audit_logs_timestamp', 'timestamp'),
    )


@event.listens_for(AuditLog, "before_update")  # type: ignore
def prevent_audit_log_update(mapper, connection, target):  # type: ignore
    raise ImmutableAuditLogError(f"Audit log entry {target.id} is immutable and cannot be modified")


@event.listens_for(AuditLog, "before_delete")  # type: ignore
def prevent_audit_log_delete(mapper, connection, target):  # type: ignore
    raise ImmutableAuditLogError(f"Audit log entry {target.id} is immutable and cannot be deleted")

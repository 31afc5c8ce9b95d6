"""
Audit trail service.

Append-only writer and scoped reader for `audit_logs`. There is no update or
delete method here; the model listeners and the database trigger reject both.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import String, and_, cast, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth.scope import ActorContext, TenantScope
from core.config import AUDIT_LOG_DEFAULT_LIMIT
from core.constants import (
    AUDIT_ACTIONS,
    ENTITY_INVOICE, ENTITY_INVOICE_ITEM, ENTITY_PAYMENT, ENTITY_PAYMENT_PLAN,
    ENTITY_INSTALLMENT, ENTITY_ADJUSTMENT,
)
from core.exceptions import LedgerError, ValidationError
from models import (
    AuditLog, Invoice, InvoiceItem, Payment, PaymentPlan, PaymentPlanInstallment, InvoiceAdjustment,
)
from services.ledger_types import AuditEntry
from utils.datetime_utils import utc_now, ensure_utc
from utils.dict_utils import to_json_safe

logger = logging.getLogger(__name__)


class AuditTrailService:
    """Service for writing and reading the immutable audit trail."""

    @staticmethod
    def build_entry(actor: ActorContext, entry: AuditEntry) -> AuditLog:
        """Turn a pending entry into an `AuditLog` row (not yet added)."""
        if entry.action_type not in AUDIT_ACTIONS:
            raise ValidationError(f"Invalid audit action type: {entry.action_type}")
        return AuditLog(
            user_id=actor.user_id,
            user_role=actor.role,
            action_type=entry.action_type,
            entity_type=entry.entity_type,
            entity_id=str(entry.entity_id),
            previous_value=to_json_safe(entry.previous_value),
            new_value=to_json_safe(entry.new_value),
            description=entry.description,
            ip_address=actor.ip_address,
            timestamp=utc_now(),
        )

    @staticmethod
    def record(
        db: Session,
        actor: ActorContext,
        action_type: str,
        entity_type: str,
        entity_id,
        previous_value=None,
        new_value=None,
        description: Optional[str] = None
    ) -> AuditLog:
        """
        Append a single audit entry and commit it.

        Args:
            db: Database session
            actor: Who performed the change
            action_type: CREATE, UPDATE or DELETE
            entity_type: Ledger entity name, e.g. "invoice"
            entity_id: Primary key of the changed row
            previous_value: Snapshot before the change
            new_value: Snapshot after the change
            description: Human-readable summary

        Returns:
            The persisted audit entry
        """
        row = AuditTrailService.build_entry(actor, AuditEntry(
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            previous_value=previous_value,
            new_value=new_value,
            description=description,
        ))
        AuditTrailService._persist(db, [row])
        return row

    @staticmethod
    def _persist(db: Session, rows: Sequence[AuditLog]) -> None:
        db.add_all(rows)
        db.commit()

    @staticmethod
    def record_entries(db: Session, actor: ActorContext, entries: Sequence[AuditEntry]) -> Optional[str]:
        """
        Write the audit entries for a mutation that has already committed.

        All entries are written in one commit. A failure is rolled back and
        logged with the AUDIT_WRITE_FAILED marker so operators can reconcile
        the gap; it never undoes the financial mutation.

        Returns:
            None on success, otherwise the error message
        """
        if not entries:
            return None
        try:
            rows = [AuditTrailService.build_entry(actor, entry) for entry in entries]
            AuditTrailService._persist(db, rows)
            return None
        except (SQLAlchemyError, LedgerError) as e:
            db.rollback()
            logger.warning(
                f"AUDIT_WRITE_FAILED user_id={actor.user_id} "
                f"entities={[(entry.entity_type, str(entry.entity_id)) for entry in entries]}: {e}"
            )
            return str(e)

    @staticmethod
    def _tenant_owned_entities(tenant_id: int):
        """SQL condition matching audit rows that reference the tenant's ledger rows."""
        owned = {
            ENTITY_INVOICE: select(cast(Invoice.id, String)).where(Invoice.organization_id == tenant_id),
            ENTITY_INVOICE_ITEM: select(cast(InvoiceItem.id, String)).join(
                Invoice, InvoiceItem.invoice_id == Invoice.id
            ).where(Invoice.organization_id == tenant_id),
            ENTITY_PAYMENT: select(cast(Payment.id, String)).where(Payment.organization_id == tenant_id),
            ENTITY_PAYMENT_PLAN: select(cast(PaymentPlan.id, String)).where(
                PaymentPlan.organization_id == tenant_id
            ),
            ENTITY_INSTALLMENT: select(cast(PaymentPlanInstallment.id, String)).join(
                PaymentPlan, PaymentPlanInstallment.payment_plan_id == PaymentPlan.id
            ).where(PaymentPlan.organization_id == tenant_id),
            ENTITY_ADJUSTMENT: select(cast(InvoiceAdjustment.id, String)).where(
                InvoiceAdjustment.organization_id == tenant_id
            ),
        }
        return or_(*[
            and_(AuditLog.entity_type == entity_type, AuditLog.entity_id.in_(ids))
            for entity_type, ids in owned.items()
        ])

    @staticmethod
    def list_audit_logs(
        db: Session,
        scope: TenantScope,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[int] = None,
        action_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = AUDIT_LOG_DEFAULT_LIMIT
    ) -> List[AuditLog]:
        """
        List audit entries visible in `scope`, newest first.

        Tenant scopes only see entries for ledger rows their organization
        owns. Super-admin scopes see everything.
        """
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if action_type is not None and action_type not in AUDIT_ACTIONS:
            raise ValidationError(f"Invalid audit action type: {action_type}")

        query = db.query(AuditLog)
        if not scope.is_super_admin:
            query = query.filter(AuditTrailService._tenant_owned_entities(scope.require_tenant()))

        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == str(entity_id))
        if user_id is not None:
            query = query.filter(AuditLog.user_id == user_id)
        if action_type:
            query = query.filter(AuditLog.action_type == action_type)
        if start is not None:
            query = query.filter(AuditLog.timestamp >= ensure_utc(start))
        if end is not None:
            query = query.filter(AuditLog.timestamp <= ensure_utc(end))

        return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()

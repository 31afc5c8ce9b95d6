"""
Post-commit bookkeeping shared by every ledger mutation.

Once a financial change is committed, its audit entries are written
synchronously and a feed line is appended. Only the audit outcome is
reported back; the feed is best-effort.
"""

from typing import Optional, Sequence, TypeVar

from sqlalchemy.orm import Session

from auth.scope import ActorContext
from services.activity_log_service import ActivityLogService
from services.audit_service import AuditTrailService
from services.ledger_types import ActivityEvent, AuditEntry, MutationResult

T = TypeVar('T')


def complete_mutation(
    db: Session,
    actor: ActorContext,
    value: T,
    entries: Sequence[AuditEntry],
    activity: Optional[ActivityEvent] = None
) -> MutationResult[T]:
    """Write audit entries and the feed line for a committed mutation."""
    audit_error = AuditTrailService.record_entries(db, actor, entries)

    if activity is not None:
        ActivityLogService.log_activity(
            db,
            organization_id=activity.organization_id,
            user_id=actor.user_id,
            action=activity.action,
            entity_type=activity.entity_type,
            entity_id=activity.entity_id,
            details=activity.details,
        )

    return MutationResult(
        value=value,
        audit_recorded=audit_error is None,
        audit_error=audit_error,
    )

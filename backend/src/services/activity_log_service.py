"""
Activity feed service.

Writes are best-effort: the feed is for dashboards, so a failure here is
logged and dropped instead of surfacing to the caller.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from auth.scope import TenantScope
from core.config import ACTIVITY_FEED_DEFAULT_LIMIT
from models import ActivityLog

logger = logging.getLogger(__name__)


class ActivityLogService:
    """Service for the human-readable activity feed."""

    @staticmethod
    def log_activity(
        db: Session,
        organization_id: Optional[int],
        user_id: Optional[int],
        action: str,
        entity_type: str,
        entity_id=None,
        details: Optional[str] = None
    ) -> Optional[ActivityLog]:
        """
        Append a feed entry and commit it.

        Returns:
            The entry, or None if it could not be written
        """
        try:
            entry = ActivityLog(
                organization_id=organization_id,
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                details=details,
            )
            db.add(entry)
            db.commit()
            return entry
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to write activity '{action}' for {entity_type} {entity_id}: {e}")
            return None

    @staticmethod
    def get_recent_activity(
        db: Session,
        scope: TenantScope,
        limit: int = ACTIVITY_FEED_DEFAULT_LIMIT
    ) -> List[ActivityLog]:
        """Most recent feed entries visible in `scope`, newest first."""
        query = scope.apply(db.query(ActivityLog), ActivityLog.organization_id)
        return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()

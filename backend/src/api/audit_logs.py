"""
Audit trail and activity feed API endpoints (read-only).
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.ledger_errors import internal_error, ledger_http_error
from api.responses import ActivityListResponse, ActivityResponse, AuditLogListResponse, AuditLogResponse
from auth.dependencies import get_tenant_scope
from auth.scope import TenantScope
from core.config import ACTIVITY_FEED_DEFAULT_LIMIT, AUDIT_LOG_DEFAULT_LIMIT
from core.database import get_db
from core.exceptions import LedgerError
from services import ActivityLogService, AuditTrailService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    action_type: Optional[str] = Query(None, description="CREATE, UPDATE or DELETE"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(AUDIT_LOG_DEFAULT_LIMIT, ge=1, le=1000),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    """List audit trail entries, newest first."""
    try:
        entries = AuditTrailService.list_audit_logs(
            db,
            scope=scope,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            action_type=action_type,
            start=start,
            end=end,
            limit=limit,
        )
        return AuditLogListResponse(entries=[AuditLogResponse.model_validate(entry) for entry in entries])
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to list audit logs", e)


@router.get("/activity", response_model=ActivityListResponse)
async def list_recent_activity(
    limit: int = Query(ACTIVITY_FEED_DEFAULT_LIMIT, ge=1, le=200),
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db)
):
    try:
        activities = ActivityLogService.get_recent_activity(db, scope=scope, limit=limit)
        return ActivityListResponse(
            activities=[ActivityResponse.model_validate(activity) for activity in activities]
        )
    except LedgerError as e:
        raise ledger_http_error(e)
    except Exception as e:
        raise internal_error("Failed to list activity", e)

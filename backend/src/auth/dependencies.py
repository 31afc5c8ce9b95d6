# pyright: reportMissingTypeStubs=false
"""
Authentication dependencies for FastAPI.

Turns the bearer token into an `ActorContext` and the actor into the
`TenantScope` every ledger service call receives.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from auth.scope import ActorContext, TenantScope, resolve_scope
from core.constants import ROLE_SUPER_ADMIN
from core.exceptions import NotFoundError
from services.jwt_service import jwt_service, TokenPayload

logger = logging.getLogger(__name__)


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[TokenPayload]:
    """Extract and validate JWT token payload."""
    if not credentials:
        return None
    return jwt_service.verify_token(credentials.credentials)


def get_current_actor(
    request: Request,
    payload: Optional[TokenPayload] = Depends(get_token_payload)
) -> ActorContext:
    """Get the authenticated actor from the JWT token."""
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials not provided"
        )

    return ActorContext(
        user_id=payload.user_id,
        role=payload.role,
        organization_id=payload.organization_id,
        is_super_admin=payload.is_super_admin,
        ip_address=request.client.host if request.client else None,
    )


def get_tenant_scope(
    organization_id: Optional[int] = Query(
        None, description="Organization to act on (super admins only)"
    ),
    actor: ActorContext = Depends(get_current_actor)
) -> TenantScope:
    """
    Resolve the tenant scope for the request.

    Only super admins may pick an organization; for everyone else the
    parameter must be absent or equal to their own organization.
    """
    if (
        organization_id is not None
        and not (actor.is_super_admin or actor.role == ROLE_SUPER_ADMIN)
        and organization_id != actor.organization_id
    ):
        # Reported like any other out-of-scope resource
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    try:
        return resolve_scope(actor, organization_id)
    except NotFoundError as e:
        logger.warning(f"User {actor.user_id} has no organization for ledger access")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

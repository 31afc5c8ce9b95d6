"""
Tenant scope resolution.

Every ledger operation receives an explicit `TenantScope` built from the
authenticated actor. Nothing in the service layer looks up the tenant from
ambient request state.
"""

from dataclasses import dataclass
from typing import Optional, TypeVar

from sqlalchemy.orm import Query

from core.constants import ROLE_SUPER_ADMIN
from core.exceptions import NotFoundError, ValidationError

T = TypeVar('T')


@dataclass(frozen=True)
class ActorContext:
    """Authenticated actor supplied by the session collaborator on every call."""

    user_id: Optional[int]
    role: str
    organization_id: Optional[int]
    is_super_admin: bool = False
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class TenantScope:
    """
    Tenant filter applied to every ledger read and write.

    `tenant_id` is forced onto created rows and used as an equality filter on
    reads. Super-admin scopes skip the filter; they may still carry a
    `tenant_id` to say which organization new rows belong to.
    """

    tenant_id: Optional[int]
    is_super_admin: bool = False

    def apply(self, query: Query[T], organization_column) -> Query[T]:
        """Restrict `query` to the scope's tenant unless super-admin."""
        if self.is_super_admin:
            return query
        return query.filter(organization_column == self.tenant_id)

    def allows(self, organization_id: Optional[int]) -> bool:
        """Whether a row owned by `organization_id` is visible in this scope."""
        return self.is_super_admin or (
            self.tenant_id is not None and organization_id == self.tenant_id
        )

    def require_tenant(self) -> int:
        """
        Tenant id to stamp onto newly created rows.

        Raises:
            ValidationError: If the scope has no tenant (super-admin acting
                without choosing an organization).
        """
        if self.tenant_id is None:
            raise ValidationError("An organization must be selected for this operation")
        return self.tenant_id


def resolve_scope(actor: ActorContext, requested_organization_id: Optional[int] = None) -> TenantScope:
    """
    Build the tenant scope for an actor.

    Super-admins may act on behalf of any organization
    (`requested_organization_id`), falling back to their own. Everyone else is
    pinned to their organization; an actor without one cannot see any ledger
    data, reported as not-found so no existence leaks out.
    """
    if actor.is_super_admin or actor.role == ROLE_SUPER_ADMIN:
        return TenantScope(
            tenant_id=requested_organization_id or actor.organization_id,
            is_super_admin=True,
        )

    if actor.organization_id is None:
        raise NotFoundError("User is not associated with any organization")

    return TenantScope(tenant_id=actor.organization_id, is_super_admin=False)

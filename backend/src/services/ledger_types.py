"""
Shared result and event types for ledger services.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass
class MutationResult(Generic[T]):
    """
    Outcome of a committed ledger mutation.

    `value` is the created or updated row. The mutation itself is always
    committed when a result is returned; `audit_recorded` is False when the
    follow-up audit write failed and operators must reconcile it.
    """

    value: T
    audit_recorded: bool = True
    audit_error: Optional[str] = None
    replayed: bool = False
    """True when an idempotency key matched an earlier request."""


@dataclass
class AuditEntry:
    """Audit row waiting to be written once the mutation has committed."""

    action_type: str
    entity_type: str
    entity_id: Any
    previous_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    description: Optional[str] = None


@dataclass
class ActivityEvent:
    """Human-readable activity feed line for a mutation."""

    action: str
    entity_type: str
    entity_id: Any
    details: Optional[str] = None
    organization_id: Optional[int] = None

"""
Ledger error taxonomy.

Every failure the ledger core reports to its callers is one of these
exceptions. They are local and recoverable: the API layer turns them into
HTTP responses and nothing here should ever bring the process down.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(LedgerError):
    """Malformed input; the operation was not attempted."""
    pass


class NotFoundError(LedgerError):
    """Referenced entity is missing or outside the caller's tenant scope."""
    pass


class InvalidStateError(LedgerError):
    """Operation is not permitted in the entity's current lifecycle state."""
    pass


class ConflictError(LedgerError):
    """Concurrent modification or unresolvable uniqueness collision."""
    pass


class ImmutableAuditLogError(LedgerError):
    """Raised when something tries to update or delete an audit log entry."""
    pass

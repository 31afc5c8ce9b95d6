"""
Translation of ledger errors and mutation results into HTTP terms.
"""

import logging

from fastapi import HTTPException, Response, status

from core.exceptions import (
    LedgerError, ValidationError, NotFoundError, InvalidStateError, ConflictError,
)
from services.ledger_types import MutationResult

logger = logging.getLogger(__name__)

AUDIT_STATUS_HEADER = "X-Audit-Status"
IDEMPOTENT_REPLAY_HEADER = "Idempotent-Replayed"

_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
)


def ledger_http_error(error: LedgerError) -> HTTPException:
    """HTTPException for a ledger error; unknown subclasses become 400."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)


def mark_mutation(response: Response, result: MutationResult) -> None:
    """Expose audit outcome and idempotent replays as response headers."""
    if not result.audit_recorded:
        response.headers[AUDIT_STATUS_HEADER] = "failed"
    if result.replayed:
        response.headers[IDEMPOTENT_REPLAY_HEADER] = "true"


def internal_error(message: str, error: Exception) -> HTTPException:
    logger.exception(f"{message}: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=message
    )

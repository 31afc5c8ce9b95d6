"""
Invoice number allocation.

Numbers look like `INV-LX3K9Q2A7F`: the prefix, the current time in
milliseconds as base36, and a short random suffix. Uniqueness is enforced
per organization; a colliding token is simply regenerated.
"""

import logging
import secrets
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.config import INVOICE_NUMBER_PREFIX, INVOICE_NUMBER_MAX_ATTEMPTS
from core.exceptions import ConflictError
from models import Invoice

logger = logging.getLogger(__name__)

_BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_SUFFIX_LENGTH = 4

InvoiceNumberGenerator = Callable[[], str]
"""Zero-argument callable returning a candidate invoice number."""


def to_base36(value: int) -> str:
    """Uppercase base36 representation of a non-negative integer."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def default_invoice_number(prefix: str = INVOICE_NUMBER_PREFIX) -> str:
    """Generate a candidate invoice number from the clock and a random suffix."""
    timestamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{prefix}-{timestamp}{suffix}"


class InvoiceNumberService:
    """Allocates invoice numbers that are unique within an organization."""

    @staticmethod
    def number_exists(db: Session, organization_id: int, invoice_number: str) -> bool:
        return db.query(Invoice.id).filter(
            Invoice.organization_id == organization_id,
            Invoice.invoice_number == invoice_number
        ).first() is not None

    @staticmethod
    def allocate(
        db: Session,
        organization_id: int,
        generator: Optional[InvoiceNumberGenerator] = None,
        max_attempts: int = INVOICE_NUMBER_MAX_ATTEMPTS
    ) -> str:
        """
        Return an invoice number not yet used by the organization.

        Args:
            db: Database session
            organization_id: Organization the invoice will belong to
            generator: Candidate number source (defaults to the clock-based token)
            max_attempts: How many candidates to try before giving up

        Raises:
            ConflictError: If every candidate collided with an existing number
        """
        generate = generator or default_invoice_number
        for attempt in range(1, max_attempts + 1):
            candidate = generate()
            if not InvoiceNumberService.number_exists(db, organization_id, candidate):
                return candidate
            logger.info(
                f"Invoice number collision for organization {organization_id}: "
                f"{candidate} (attempt {attempt}/{max_attempts})"
            )

        raise ConflictError(
            "Could not allocate a unique invoice number",
            {"organization_id": organization_id, "attempts": max_attempts}
        )

    @staticmethod
    def is_number_collision(error: Optional[BaseException]) -> bool:
        """Whether a failed insert hit the per-organization invoice number constraint."""
        if error is None:
            return False
        message = str(getattr(error, "orig", error))
        return "uq_invoices_organization_number" in message or "invoices.invoice_number" in message

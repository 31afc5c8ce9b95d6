"""
Test utilities for clinic ledger tests.
"""

import os
import jwt
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from auth.scope import ActorContext, TenantScope
from core.config import JWT_SECRET_KEY
from models import Invoice
from services import InvoiceService

# Test database URL
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")
IS_SQLITE = TEST_DATABASE_URL.startswith("sqlite")


def create_jwt_token(
    user_id: int,
    organization_id: Optional[int],
    role: str = "admin",
    is_super_admin: bool = False
) -> str:
    """Create a JWT token as issued by the session service."""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "role": role,
        "organization_id": organization_id,
        "is_super_admin": is_super_admin,
        "exp": now + timedelta(hours=1),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm="HS256")


def auth_headers(user_id: int, organization_id: Optional[int], **kwargs: Any) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_jwt_token(user_id, organization_id, **kwargs)}"}


def standard_items() -> List[Dict[str, Any]]:
    """Two consultations at 50 and one supply at 30: total 130."""
    return [
        {"description": "Consultation", "quantity": 2, "unit_price": Decimal("50")},
        {"description": "Bandage kit", "quantity": 1, "unit_price": Decimal("30")},
    ]


def create_sent_invoice(
    db: Session,
    scope: TenantScope,
    actor: ActorContext,
    items: Optional[List[Dict[str, Any]]] = None,
    discount_type: Optional[str] = None,
    discount_value: Any = 0,
    patient_id: int = 501,
    **kwargs: Any
) -> Invoice:
    """Create an invoice and send it so it can take payments."""
    invoice = InvoiceService.create_invoice(
        db,
        scope=scope,
        actor=actor,
        patient_id=patient_id,
        items=items or standard_items(),
        discount_type=discount_type,
        discount_value=discount_value,
        **kwargs
    ).value
    return InvoiceService.send_invoice(db, scope=scope, actor=actor, invoice_id=invoice.id).value

"""
Unit tests for JWT verification.
"""

from datetime import datetime, timedelta, timezone

import jwt

from core.config import JWT_SECRET_KEY
from services.jwt_service import JWTService, TokenPayload
from tests.utils import create_jwt_token


class TestJWTService:

    def test_round_trip(self):
        service = JWTService()
        token = service.create_access_token(TokenPayload(user_id=3, role="admin", organization_id=12))

        payload = service.verify_token(token)
        assert payload is not None
        assert payload.user_id == 3
        assert payload.organization_id == 12
        assert payload.is_super_admin is False
        assert payload.exp - payload.iat == JWTService.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    def test_verifies_externally_issued_token(self):
        payload = JWTService().verify_token(create_jwt_token(4, 2, role="staff"))
        assert payload is not None
        assert payload.role == "staff"

    def test_expired_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {"user_id": 1, "role": "admin", "organization_id": 1, "iat": past, "exp": past + timedelta(minutes=1)},
            JWT_SECRET_KEY,
            algorithm="HS256",
        )
        assert JWTService().verify_token(token) is None

    def test_wrong_signature_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"user_id": 1, "role": "admin", "organization_id": 1, "iat": now, "exp": now + timedelta(minutes=5)},
            "not-the-secret",
            algorithm="HS256",
        )
        assert JWTService().verify_token(token) is None

    def test_malformed_payload_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"iat": now, "exp": now + timedelta(minutes=5)}, JWT_SECRET_KEY, algorithm="HS256")
        assert JWTService().verify_token(token) is None

"""
Concurrency tests for payments.

These need real row locks, so they only run against PostgreSQL
(TEST_DATABASE_URL); SQLite has a single shared connection in the suite.
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session, sessionmaker

from core.exceptions import LedgerError
from models import Invoice, Payment
from services import PaymentService
from tests.utils import IS_SQLITE, create_sent_invoice

pytestmark = pytest.mark.skipif(IS_SQLITE, reason="row locking requires PostgreSQL")


class TestConcurrentPayments:

    def test_only_one_overlapping_payment_succeeds(self, db_engine, db_session: Session, scope, actor):
        """Two payments of 100 on a 117 invoice: the second one sees the first and is rejected."""
        invoice = create_sent_invoice(db_session, scope, actor, discount_type="percentage", discount_value=10)
        TestingSession = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)

        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def pay():
            session = TestingSession()
            try:
                barrier.wait()
                PaymentService.record_payment(
                    session, scope=scope, actor=actor, invoice_id=invoice.id,
                    amount="100", payment_method="cash",
                )
                outcome = "ok"
            except LedgerError as e:
                outcome = type(e).__name__
            finally:
                session.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=pay) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["ValidationError", "ok"]

        db_session.expire_all()
        refreshed = db_session.get(Invoice, invoice.id)
        assert refreshed.paid_amount == Decimal("100.00")
        assert refreshed.status == "partial"
        assert db_session.query(Payment).count() == 1

    def test_concurrent_idempotent_requests_create_one_payment(self, db_engine, db_session: Session, scope, actor):
        invoice = create_sent_invoice(db_session, scope, actor)
        TestingSession = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)

        barrier = threading.Barrier(3)
        payment_ids = []
        lock = threading.Lock()

        def pay():
            session = TestingSession()
            try:
                barrier.wait()
                result = PaymentService.record_payment(
                    session, scope=scope, actor=actor, invoice_id=invoice.id,
                    amount="10", payment_method="card", idempotency_key="same-request",
                )
                with lock:
                    payment_ids.append(result.value.id)
            finally:
                session.close()

        threads = [threading.Thread(target=pay) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(payment_ids) == 3
        assert len(set(payment_ids)) == 1
        assert db_session.query(Payment).count() == 1

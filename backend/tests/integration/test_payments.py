"""
Integration tests for payments, refunds and the paid amount invariant.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import AuditLog, Invoice, Payment
from services import InvoiceService, PaymentService
from tests.utils import create_sent_invoice, standard_items


def assert_paid_amount_matches_payments(db: Session, invoice: Invoice) -> None:
    """paid_amount is always the sum of non-refunded payments."""
    total = db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
        Payment.invoice_id == invoice.id,
        Payment.is_refunded.is_(False)
    ).scalar()
    assert Decimal(str(total)).quantize(Decimal("0.01")) == invoice.paid_amount


class TestRecordPayment:
    """Test recording payments against an invoice."""

    @pytest.fixture
    def invoice(self, db_session: Session, scope, actor) -> Invoice:
        return create_sent_invoice(db_session, scope, actor, discount_type="percentage", discount_value=10)

    def test_partial_then_full_payment(self, db_session: Session, scope, actor, invoice):
        first = PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="60", payment_method="cash"
        )
        assert first.audit_recorded is True
        assert invoice.paid_amount == Decimal("60.00")
        assert invoice.status == "partial"
        assert PaymentService.balance_due(db_session, scope, invoice.id) == Decimal("57.00")
        assert_paid_amount_matches_payments(db_session, invoice)

        PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="57", payment_method="card"
        )
        assert invoice.paid_amount == Decimal("117.00")
        assert invoice.status == "paid"
        assert PaymentService.balance_due(db_session, scope, invoice.id) == Decimal("0.00")
        assert_paid_amount_matches_payments(db_session, invoice)

    def test_payment_audit_entries(self, db_session: Session, scope, actor, invoice):
        payment = PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="60", payment_method="cash"
        ).value

        payment_entry = db_session.query(AuditLog).filter(
            AuditLog.entity_type == "payment", AuditLog.entity_id == str(payment.id)
        ).one()
        assert payment_entry.action_type == "CREATE"
        assert payment_entry.new_value["amount"] == "60.00"

        invoice_update = db_session.query(AuditLog).filter(
            AuditLog.entity_type == "invoice",
            AuditLog.entity_id == str(invoice.id),
            AuditLog.action_type == "UPDATE",
            AuditLog.description.like("%paid amount%"),
        ).one()
        assert invoice_update.previous_value["status"] == "sent"
        assert invoice_update.new_value["status"] == "partial"
        assert invoice_update.new_value["paid_amount"] == "60.00"

    def test_overpayment_rejected(self, db_session: Session, scope, actor, invoice):
        with pytest.raises(ValidationError):
            PaymentService.record_payment(
                db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="117.01", payment_method="cash"
            )
        assert db_session.query(Payment).count() == 0
        assert invoice.status == "sent"

    @pytest.mark.parametrize("amount", ["0", "-5", "abc"])
    def test_invalid_amount_rejected(self, db_session: Session, scope, actor, invoice, amount):
        with pytest.raises(ValidationError):
            PaymentService.record_payment(
                db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount=amount, payment_method="cash"
            )

    def test_unknown_method_rejected(self, db_session: Session, scope, actor, invoice):
        with pytest.raises(ValidationError):
            PaymentService.record_payment(
                db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="10", payment_method="barter"
            )

    def test_draft_invoice_rejects_payment(self, db_session: Session, scope, actor):
        draft = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items()
        ).value
        with pytest.raises(InvalidStateError):
            PaymentService.record_payment(
                db_session, scope=scope, actor=actor, invoice_id=draft.id, amount="10", payment_method="cash"
            )

    def test_canceled_invoice_rejects_payment(self, db_session: Session, scope, actor, invoice):
        InvoiceService.void_invoice(db_session, scope=scope, actor=actor, invoice_id=invoice.id)
        with pytest.raises(InvalidStateError):
            PaymentService.record_payment(
                db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="10", payment_method="cash"
            )

    def test_paid_invoice_cannot_be_voided(self, db_session: Session, scope, actor, invoice):
        PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="117", payment_method="cash"
        )
        with pytest.raises(InvalidStateError):
            InvoiceService.void_invoice(db_session, scope=scope, actor=actor, invoice_id=invoice.id)

    def test_partially_paid_invoice_can_be_voided(self, db_session: Session, scope, actor, invoice):
        PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="17", payment_method="cash"
        )
        voided = InvoiceService.void_invoice(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, reason="Patient disputed"
        ).value
        assert voided.status == "canceled"
        assert voided.paid_amount == Decimal("17.00")

    def test_idempotent_replay(self, db_session: Session, scope, actor, invoice):
        first = PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="60",
            payment_method="cash", idempotency_key="pay-1",
        )
        second = PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="60",
            payment_method="cash", idempotency_key="pay-1",
        )

        assert second.replayed is True
        assert second.value.id == first.value.id
        assert db_session.query(Payment).count() == 1
        assert invoice.paid_amount == Decimal("60.00")
        assert db_session.query(AuditLog).filter(AuditLog.entity_type == "payment").count() == 1

    def test_reused_key_with_different_amount_conflicts(self, db_session: Session, scope, actor, invoice):
        PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="60",
            payment_method="cash", idempotency_key="pay-1",
        )
        with pytest.raises(ConflictError):
            PaymentService.record_payment(
                db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="50",
                payment_method="cash", idempotency_key="pay-1",
            )
        assert db_session.query(Payment).count() == 1
        assert invoice.paid_amount == Decimal("60.00")

    def test_reused_key_on_other_invoice_conflicts(self, db_session: Session, scope, actor, invoice):
        other_invoice = create_sent_invoice(db_session, scope, actor, patient_id=777)
        PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="60",
            payment_method="cash", idempotency_key="pay-1",
        )
        with pytest.raises(ConflictError):
            PaymentService.record_payment(
                db_session, scope=scope, actor=actor, invoice_id=other_invoice.id, amount="60",
                payment_method="cash", idempotency_key="pay-1",
            )
        assert db_session.query(Payment).filter(Payment.invoice_id == other_invoice.id).count() == 0

    def test_other_tenant_cannot_pay(self, db_session: Session, other_scope, other_actor, invoice):
        with pytest.raises(NotFoundError):
            PaymentService.record_payment(
                db_session, scope=other_scope, actor=other_actor, invoice_id=invoice.id,
                amount="10", payment_method="cash",
            )


class TestRefundPayment:
    """Test refunds."""

    @pytest.fixture
    def paid_invoice(self, db_session: Session, scope, actor):
        invoice = create_sent_invoice(db_session, scope, actor, discount_type="percentage", discount_value=10)
        first = PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="60", payment_method="cash"
        ).value
        second = PaymentService.record_payment(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, amount="57", payment_method="card"
        ).value
        return invoice, first, second

    def test_refund_reopens_invoice(self, db_session: Session, scope, actor, paid_invoice):
        invoice, _, second = paid_invoice
        assert invoice.status == "paid"

        refunded = PaymentService.refund_payment(
            db_session, scope=scope, actor=actor, payment_id=second.id, reason="Card chargeback"
        ).value

        assert refunded.is_refunded is True
        assert refunded.refund_reason == "Card chargeback"
        assert refunded.refunded_at is not None
        assert invoice.paid_amount == Decimal("60.00")
        assert invoice.status == "partial"
        assert PaymentService.balance_due(db_session, scope, invoice.id) == Decimal("57.00")
        assert_paid_amount_matches_payments(db_session, invoice)

    def test_refund_all_returns_to_sent(self, db_session: Session, scope, actor, paid_invoice):
        invoice, first, second = paid_invoice
        PaymentService.refund_payment(db_session, scope=scope, actor=actor, payment_id=first.id, reason="Error")
        PaymentService.refund_payment(db_session, scope=scope, actor=actor, payment_id=second.id, reason="Error")

        assert invoice.paid_amount == Decimal("0.00")
        assert invoice.status == "sent"

    def test_refunded_payments_stay_listed(self, db_session: Session, scope, actor, paid_invoice):
        invoice, _, second = paid_invoice
        PaymentService.refund_payment(db_session, scope=scope, actor=actor, payment_id=second.id, reason="Error")

        payments = PaymentService.get_payments_for_invoice(db_session, scope, invoice.id)
        assert [payment.is_refunded for payment in payments] == [False, True]

    def test_double_refund_is_not_found(self, db_session: Session, scope, actor, paid_invoice):
        _, _, second = paid_invoice
        PaymentService.refund_payment(db_session, scope=scope, actor=actor, payment_id=second.id, reason="Error")
        with pytest.raises(NotFoundError):
            PaymentService.refund_payment(db_session, scope=scope, actor=actor, payment_id=second.id, reason="Again")

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_reason_required(self, db_session: Session, scope, actor, paid_invoice, reason):
        _, _, second = paid_invoice
        with pytest.raises(ValidationError):
            PaymentService.refund_payment(db_session, scope=scope, actor=actor, payment_id=second.id, reason=reason)

    def test_refund_audit_entries(self, db_session: Session, scope, actor, paid_invoice):
        invoice, _, second = paid_invoice
        PaymentService.refund_payment(db_session, scope=scope, actor=actor, payment_id=second.id, reason="Error")

        entry = db_session.query(AuditLog).filter(
            AuditLog.entity_type == "payment",
            AuditLog.entity_id == str(second.id),
            AuditLog.action_type == "UPDATE",
        ).one()
        assert entry.previous_value["is_refunded"] is False
        assert entry.new_value["is_refunded"] is True

    def test_other_tenant_cannot_refund(self, db_session: Session, other_scope, other_actor, paid_invoice):
        _, first, _ = paid_invoice
        with pytest.raises(NotFoundError):
            PaymentService.refund_payment(
                db_session, scope=other_scope, actor=other_actor, payment_id=first.id, reason="Error"
            )

"""
Integration tests for invoice creation, draft editing and the lifecycle.
"""

from datetime import date, timedelta
from decimal import Decimal
from itertools import chain, repeat
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import AuditLog, Invoice, Organization
from services import InvoiceNumberService, InvoiceService
from tests.utils import create_sent_invoice, standard_items


class TestCreateInvoice:
    """Test invoice creation."""

    def test_create_with_percentage_discount(self, db_session: Session, scope, actor, organization):
        """Two consultations at 50 plus a 30 supply, 10% off."""
        result = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501,
            items=standard_items(), discount_type="percentage", discount_value=10,
        )
        invoice = result.value

        assert result.audit_recorded is True
        assert result.replayed is False
        assert invoice.organization_id == organization.id
        assert invoice.status == "draft"
        assert invoice.total_amount == Decimal("130.00")
        assert invoice.final_amount == Decimal("117.00")
        assert invoice.paid_amount == Decimal("0.00")
        assert invoice.invoice_number.startswith("INV-")
        assert [item.description for item in invoice.items] == ["Consultation", "Bandage kit"]
        assert [item.total_price for item in invoice.items] == [Decimal("100.00"), Decimal("30.00")]

    def test_create_writes_audit_entry(self, db_session: Session, scope, actor):
        invoice = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items()
        ).value

        entries = db_session.query(AuditLog).filter(
            AuditLog.entity_type == "invoice", AuditLog.entity_id == str(invoice.id)
        ).all()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action_type == "CREATE"
        assert entry.user_id == actor.user_id
        assert entry.ip_address == "10.0.0.1"
        assert entry.previous_value is None
        assert entry.new_value["final_amount"] == "130.00"
        assert len(entry.new_value["items"]) == 2

    @pytest.mark.parametrize("kwargs", [
        {"items": []},
        {"patient_id": 0},
        {"discount_type": "percentage", "discount_value": 150},
        {"items": [{"description": "Consultation", "quantity": 0, "unit_price": 50}]},
    ])
    def test_invalid_input_rejected(self, db_session: Session, scope, actor, kwargs):
        params = {"patient_id": 501, "items": standard_items()}
        params.update(kwargs)
        with pytest.raises(ValidationError):
            InvoiceService.create_invoice(db_session, scope=scope, actor=actor, **params)
        assert db_session.query(Invoice).count() == 0

    def test_due_date_before_issue_date_rejected(self, db_session: Session, scope, actor):
        with pytest.raises(ValidationError):
            InvoiceService.create_invoice(
                db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
                issued_date=date(2024, 3, 1), due_date=date(2024, 2, 1),
            )

    def test_inactive_organization_rejected(self, db_session: Session, scope, actor, organization):
        organization.is_active = False
        db_session.commit()

        with pytest.raises(InvalidStateError):
            InvoiceService.create_invoice(
                db_session, scope=scope, actor=actor, patient_id=501, items=standard_items()
            )

    def test_idempotency_key_replays_original(self, db_session: Session, scope, actor):
        first = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
            idempotency_key="create-1",
        )
        second = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
            idempotency_key="create-1",
        )

        assert second.replayed is True
        assert second.value.id == first.value.id
        assert db_session.query(Invoice).count() == 1
        assert db_session.query(AuditLog).filter(AuditLog.entity_type == "invoice").count() == 1

    def test_idempotency_keys_are_per_organization(
        self, db_session: Session, scope, actor, other_scope, other_actor
    ):
        first = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
            idempotency_key="shared-key",
        )
        second = InvoiceService.create_invoice(
            db_session, scope=other_scope, actor=other_actor, patient_id=501, items=standard_items(),
            idempotency_key="shared-key",
        )
        assert second.replayed is False
        assert second.value.id != first.value.id


class TestInvoiceNumbers:
    """Test invoice number allocation."""

    def test_collision_is_retried(self, db_session: Session, scope, actor, organization):
        InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
            number_generator=lambda: "INV-TAKEN",
        )
        candidates = iter(["INV-TAKEN", "INV-TAKEN", "INV-FRESH"])
        invoice = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=502, items=standard_items(),
            number_generator=lambda: next(candidates),
        ).value
        assert invoice.invoice_number == "INV-FRESH"

    def test_exhausted_attempts_raise_conflict(self, db_session: Session, scope, actor, organization):
        InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
            number_generator=lambda: "INV-TAKEN",
        )
        with pytest.raises(ConflictError):
            InvoiceNumberService.allocate(
                db_session, organization.id, generator=lambda: "INV-TAKEN", max_attempts=3
            )

    def test_number_taken_after_check_is_retried(self, db_session: Session, scope, actor, organization):
        """The insert itself collides when another create wins the race after the lookup."""
        InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
            number_generator=lambda: "INV-TAKEN",
        )
        candidates = iter(["INV-TAKEN", "INV-FRESH"])
        with patch.object(InvoiceNumberService, "number_exists", return_value=False):
            invoice = InvoiceService.create_invoice(
                db_session, scope=scope, actor=actor, patient_id=502, items=standard_items(),
                number_generator=lambda: next(candidates),
            ).value

        assert invoice.invoice_number == "INV-FRESH"
        assert db_session.query(Invoice).count() == 2

    def test_repeated_insert_collisions_raise_conflict(self, db_session: Session, scope, actor, organization):
        InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
            number_generator=lambda: "INV-TAKEN",
        )
        with patch.object(InvoiceNumberService, "number_exists", return_value=False):
            with pytest.raises(ConflictError):
                InvoiceService.create_invoice(
                    db_session, scope=scope, actor=actor, patient_id=502, items=standard_items(),
                    number_generator=lambda: "INV-TAKEN",
                )
        assert db_session.query(Invoice).count() == 1

    def test_same_number_allowed_in_other_organization(
        self, db_session: Session, scope, actor, other_scope, other_actor
    ):
        numbers = chain(["INV-SAME"], repeat("INV-SAME"))
        first = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501, items=standard_items(),
            number_generator=lambda: next(numbers),
        ).value
        second = InvoiceService.create_invoice(
            db_session, scope=other_scope, actor=other_actor, patient_id=501, items=standard_items(),
            number_generator=lambda: next(numbers),
        ).value
        assert first.invoice_number == second.invoice_number == "INV-SAME"


class TestDraftEditing:
    """Test item and discount edits on drafts."""

    @pytest.fixture
    def draft(self, db_session: Session, scope, actor) -> Invoice:
        return InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=501,
            items=standard_items(), discount_type="percentage", discount_value=10,
        ).value

    def test_add_item_recomputes_totals(self, db_session: Session, scope, actor, draft):
        result = InvoiceService.add_item(
            db_session, scope=scope, actor=actor, invoice_id=draft.id,
            description="X-ray", quantity=1, unit_price="70",
        )
        invoice = result.value

        assert invoice.total_amount == Decimal("200.00")
        assert invoice.final_amount == Decimal("180.00")
        assert len(invoice.items) == 3
        assert invoice.items[-1].display_order == 2

        actions = {
            (entry.entity_type, entry.action_type)
            for entry in db_session.query(AuditLog).all()
        }
        assert ("invoice_item", "CREATE") in actions
        assert ("invoice", "UPDATE") in actions

    def test_remove_item(self, db_session: Session, scope, actor, draft):
        supply = draft.items[1]
        invoice = InvoiceService.remove_item(
            db_session, scope=scope, actor=actor, invoice_id=draft.id, item_id=supply.id
        ).value

        assert invoice.total_amount == Decimal("100.00")
        assert invoice.final_amount == Decimal("90.00")
        assert [item.description for item in invoice.items] == ["Consultation"]

        deleted = db_session.query(AuditLog).filter(AuditLog.action_type == "DELETE").one()
        assert deleted.entity_id == str(supply.id)
        assert deleted.previous_value["description"] == "Bandage kit"

    def test_last_item_cannot_be_removed(self, db_session: Session, scope, actor, draft):
        InvoiceService.remove_item(
            db_session, scope=scope, actor=actor, invoice_id=draft.id, item_id=draft.items[1].id
        )
        with pytest.raises(ValidationError):
            InvoiceService.remove_item(
                db_session, scope=scope, actor=actor, invoice_id=draft.id, item_id=draft.items[0].id
            )

    def test_update_discount(self, db_session: Session, scope, actor, draft):
        invoice = InvoiceService.update_discount(
            db_session, scope=scope, actor=actor, invoice_id=draft.id,
            discount_type="value", discount_value="30",
        ).value
        assert invoice.final_amount == Decimal("100.00")

        invoice = InvoiceService.update_discount(
            db_session, scope=scope, actor=actor, invoice_id=draft.id, discount_type=None,
        ).value
        assert invoice.discount_type == "none"
        assert invoice.final_amount == Decimal("130.00")

    def test_sent_invoice_cannot_be_edited(self, db_session: Session, scope, actor, draft):
        InvoiceService.send_invoice(db_session, scope=scope, actor=actor, invoice_id=draft.id)

        with pytest.raises(InvalidStateError):
            InvoiceService.add_item(
                db_session, scope=scope, actor=actor, invoice_id=draft.id,
                description="X-ray", quantity=1, unit_price=70,
            )
        with pytest.raises(InvalidStateError):
            InvoiceService.remove_item(
                db_session, scope=scope, actor=actor, invoice_id=draft.id, item_id=draft.items[0].id
            )
        with pytest.raises(InvalidStateError):
            InvoiceService.update_discount(
                db_session, scope=scope, actor=actor, invoice_id=draft.id,
                discount_type="value", discount_value=5,
            )


class TestLifecycle:
    """Test send, void, detail updates and derived overdue status."""

    def test_send(self, db_session: Session, scope, actor):
        invoice = create_sent_invoice(db_session, scope, actor)
        assert invoice.status == "sent"
        assert invoice.sent_at is not None

        with pytest.raises(InvalidStateError):
            InvoiceService.send_invoice(db_session, scope=scope, actor=actor, invoice_id=invoice.id)

    def test_void(self, db_session: Session, scope, actor):
        invoice = create_sent_invoice(db_session, scope, actor)
        voided = InvoiceService.void_invoice(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, reason="Duplicate"
        ).value

        assert voided.status == "canceled"
        assert voided.cancel_reason == "Duplicate"
        assert voided.canceled_at is not None

        with pytest.raises(InvalidStateError):
            InvoiceService.void_invoice(db_session, scope=scope, actor=actor, invoice_id=invoice.id)

    def test_update_details(self, db_session: Session, scope, actor):
        invoice = create_sent_invoice(db_session, scope, actor, notes="Original")
        due = invoice.issued_date + timedelta(days=30)

        updated = InvoiceService.update_details(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, due_date=due
        ).value
        assert updated.due_date == due
        assert updated.notes == "Original"

        updated = InvoiceService.update_details(
            db_session, scope=scope, actor=actor, invoice_id=invoice.id, notes=None
        ).value
        assert updated.due_date == due
        assert updated.notes is None

    def test_update_details_rejects_early_due_date(self, db_session: Session, scope, actor):
        invoice = create_sent_invoice(db_session, scope, actor)
        with pytest.raises(ValidationError):
            InvoiceService.update_details(
                db_session, scope=scope, actor=actor, invoice_id=invoice.id,
                due_date=invoice.issued_date - timedelta(days=1),
            )

    def test_canceled_invoice_details_are_frozen(self, db_session: Session, scope, actor):
        invoice = create_sent_invoice(db_session, scope, actor)
        InvoiceService.void_invoice(db_session, scope=scope, actor=actor, invoice_id=invoice.id)
        with pytest.raises(InvalidStateError):
            InvoiceService.update_details(db_session, scope=scope, actor=actor, invoice_id=invoice.id, notes="x")

    def test_overdue_is_derived(self, db_session: Session, scope, actor):
        invoice = create_sent_invoice(
            db_session, scope, actor, issued_date=date(2024, 1, 1), due_date=date(2024, 1, 31)
        )

        assert invoice.status == "sent"
        assert InvoiceService.effective_status(invoice, as_of=date(2024, 1, 31)) == "sent"
        assert InvoiceService.effective_status(invoice, as_of=date(2024, 2, 1)) == "overdue"

    def test_list_invoices_with_filters(self, db_session: Session, scope, actor):
        overdue = create_sent_invoice(
            db_session, scope, actor, patient_id=601, issued_date=date(2024, 1, 1), due_date=date(2024, 1, 31)
        )
        current = create_sent_invoice(db_session, scope, actor, patient_id=602)
        draft = InvoiceService.create_invoice(
            db_session, scope=scope, actor=actor, patient_id=601, items=standard_items()
        ).value

        assert {invoice.id for invoice in InvoiceService.list_invoices(db_session, scope)} == {
            overdue.id, current.id, draft.id
        }
        assert {invoice.id for invoice in InvoiceService.list_invoices(db_session, scope, patient_id=601)} == {
            overdue.id, draft.id
        }
        assert [invoice.id for invoice in InvoiceService.list_invoices(
            db_session, scope, status="overdue", as_of=date(2024, 3, 1)
        )] == [overdue.id]
        assert [invoice.id for invoice in InvoiceService.list_invoices(db_session, scope, status="draft")] == [
            draft.id
        ]

        with pytest.raises(ValidationError):
            InvoiceService.list_invoices(db_session, scope, status="lost")


class TestTenantIsolation:
    """Test that tenants never see each other's invoices."""

    def test_other_tenant_gets_not_found(self, db_session: Session, scope, actor, other_scope, other_actor):
        invoice = create_sent_invoice(db_session, scope, actor)

        with pytest.raises(NotFoundError):
            InvoiceService.get_invoice(db_session, other_scope, invoice.id)
        with pytest.raises(NotFoundError):
            InvoiceService.void_invoice(db_session, scope=other_scope, actor=other_actor, invoice_id=invoice.id)
        assert InvoiceService.list_invoices(db_session, other_scope) == []

    def test_super_admin_sees_all_tenants(
        self, db_session: Session, scope, actor, other_scope, other_actor, super_admin
    ):
        from auth.scope import resolve_scope

        first = create_sent_invoice(db_session, scope, actor)
        second = create_sent_invoice(db_session, other_scope, other_actor)
        admin_scope = resolve_scope(super_admin)

        assert {invoice.id for invoice in InvoiceService.list_invoices(db_session, admin_scope)} == {
            first.id, second.id
        }
        assert InvoiceService.get_invoice(db_session, admin_scope, second.id).id == second.id

    def test_super_admin_must_pick_organization_to_create(self, db_session: Session, super_admin):
        from auth.scope import resolve_scope

        with pytest.raises(ValidationError):
            InvoiceService.create_invoice(
                db_session, scope=resolve_scope(super_admin), actor=super_admin,
                patient_id=501, items=standard_items(),
            )

    def test_missing_organization(self, db_session: Session, actor):
        from auth.scope import TenantScope

        with pytest.raises(NotFoundError):
            InvoiceService.create_invoice(
                db_session, scope=TenantScope(tenant_id=99999), actor=actor,
                patient_id=501, items=standard_items(),
            )
        assert db_session.query(Organization).count() == 1

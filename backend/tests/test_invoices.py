"""
Invoice ledger tests.

Verifies:
- Company/tax number validation and total == subtotal + tax
- Invoice number uniqueness and INV-YYYYMMDD-NNNN generation
- Only DRAFT invoices are editable; deletion is soft
- Credit notes negate the original, link back, and are unique per original
- Duplicates start from a clean slate
"""

import re

import pytest

from kasse.extensions import db
from kasse.models import Invoice, PaymentDetails
from kasse.models.invoices import DOC_CREDIT_NOTE, INVOICE_CREDIT_NOTE, INVOICE_DRAFT, INVOICE_PAID
from kasse.services import invoice_service, payment_service
from kasse.validation import ConflictError, NotFoundError, ValidationError


def _paid_invoice(make_invoice, user, **fields):
    invoice = make_invoice(**fields)
    payment_service.create_payment(invoice.id, invoice.total_cents, "CARD", user.id)
    db.session.expire_all()
    return db.session.get(Invoice, invoice.id)


class TestCreateInvoice:

    def test_creates_draft_with_generated_number(self, make_invoice):
        invoice = make_invoice(subtotal_cents=10000)

        assert invoice.status == INVOICE_DRAFT
        assert invoice.total_cents == 12000
        assert invoice.paid_cents == 0
        assert invoice.remaining_cents == 12000
        assert re.fullmatch(r"INV-\d{8}-0001", invoice.invoice_number)
        assert invoice.due_date > invoice.invoice_date

    def test_sequence_increments_per_day(self, make_invoice):
        first = make_invoice()
        second = make_invoice()
        assert first.invoice_number[:-4] == second.invoice_number[:-4]
        assert second.invoice_number.endswith("0002")

    @pytest.mark.parametrize("tax_number", ["DE123456789", "ATU1234", "ATU123456789", "", None])
    def test_invalid_company_tax_number(self, make_invoice, tax_number):
        with pytest.raises(ValidationError):
            make_invoice(company_tax_number=tax_number)

    def test_company_name_required(self, make_invoice):
        with pytest.raises(ValidationError):
            make_invoice(company_name="")

    def test_total_must_equal_subtotal_plus_tax(self, make_invoice):
        with pytest.raises(ValidationError):
            make_invoice(subtotal_cents=1000, tax_cents=200, total_cents=1300)

    def test_negative_amounts_rejected(self, make_invoice):
        with pytest.raises(ValidationError):
            make_invoice(subtotal_cents=-1000, tax_cents=0)

    def test_duplicate_number_conflicts(self, make_invoice):
        make_invoice(invoice_number="INV-001")
        with pytest.raises(ConflictError):
            make_invoice(invoice_number="INV-001")

    def test_number_of_deleted_invoice_can_be_reused(self, make_invoice):
        first = make_invoice(invoice_number="INV-002")
        invoice_service.delete_invoice(first.id)
        second = make_invoice(invoice_number="INV-002")
        assert second.id != first.id

    def test_unknown_fields_rejected(self, make_invoice):
        with pytest.raises(ValidationError):
            make_invoice(paid_cents=500)


class TestUpdateAndDelete:

    def test_update_draft(self, make_invoice):
        invoice = make_invoice()
        updated = invoice_service.update_invoice(invoice.id, {"customer_name": "Anna Berger"})
        assert updated.customer_name == "Anna Berger"

    def test_update_keeps_totals_consistent(self, make_invoice):
        invoice = make_invoice(subtotal_cents=1000, tax_cents=200)
        with pytest.raises(ValidationError):
            invoice_service.update_invoice(invoice.id, {"total_cents": 5000})

        db.session.rollback()
        updated = invoice_service.update_invoice(
            invoice.id, {"subtotal_cents": 2000, "tax_cents": 400, "total_cents": 2400},
        )
        assert updated.remaining_cents == 2400

    @pytest.mark.parametrize("fields", [
        {"invoice_date": None},
        {"kassen_id": None},
        {"tax_details": None},
    ])
    def test_non_nullable_fields_cannot_be_cleared(self, make_invoice, fields):
        invoice = make_invoice()
        with pytest.raises(ValidationError):
            invoice_service.update_invoice(invoice.id, fields)

    def test_nullable_fields_can_be_cleared(self, make_invoice):
        invoice = make_invoice()
        updated = invoice_service.update_invoice(invoice.id, {"customer_name": None})
        assert updated.customer_name is None

    def test_paid_invoice_is_immutable(self, make_invoice, cashier):
        invoice = _paid_invoice(make_invoice, cashier)
        with pytest.raises(ConflictError):
            invoice_service.update_invoice(invoice.id, {"customer_name": "Someone Else"})

    def test_delete_is_soft(self, make_invoice):
        invoice = make_invoice()
        invoice_service.delete_invoice(invoice.id)

        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(invoice.id)

        db.session.expire_all()
        row = db.session.get(Invoice, invoice.id)
        assert row is not None
        assert row.is_active is False
        assert row.deactivated_at is not None

    def test_list_and_search(self, make_invoice):
        make_invoice(customer_name="Familie Huber")
        make_invoice(customer_name="Cafe Central")

        assert len(invoice_service.list_invoices()) == 2
        found = invoice_service.list_invoices(query="huber")
        assert [inv.customer_name for inv in found] == ["Familie Huber"]
        assert invoice_service.list_invoices(status=INVOICE_PAID) == []

        with pytest.raises(ValidationError):
            invoice_service.list_invoices(status="BOGUS")


class TestCreditNotes:

    def test_credit_note_negates_original(self, make_invoice, cashier, manager):
        original = _paid_invoice(make_invoice, cashier, subtotal_cents=10000)

        credit = invoice_service.create_credit_note(original.id, "RETURN", "Ware retour", user_id=manager.id)

        assert credit.invoice_number == f"{original.invoice_number}-ST"
        assert credit.document_type == DOC_CREDIT_NOTE
        assert credit.status == INVOICE_CREDIT_NOTE
        assert credit.original_invoice_id == original.id
        assert credit.subtotal_cents == -original.subtotal_cents
        assert credit.tax_cents == -original.tax_cents
        assert credit.total_cents == -original.total_cents
        assert credit.paid_cents == -original.paid_cents
        assert credit.remaining_cents == 0
        assert credit.tse_signature == ""
        assert credit.storno_reason_code == "RETURN"

    def test_credit_note_allowed_for_sent_invoice(self, make_invoice):
        invoice = make_invoice()
        invoice.status = "SENT"
        db.session.commit()

        credit = invoice_service.create_credit_note(invoice.id, "CORRECTION")
        assert credit.total_cents == -invoice.total_cents

    def test_second_credit_note_conflicts(self, make_invoice, cashier):
        original = _paid_invoice(make_invoice, cashier)
        invoice_service.create_credit_note(original.id, "RETURN")

        with pytest.raises(ConflictError):
            invoice_service.create_credit_note(original.id, "RETURN")

        assert db.session.query(Invoice).filter_by(document_type=DOC_CREDIT_NOTE).count() == 1

    def test_credit_note_on_draft_rejected(self, make_invoice):
        invoice = make_invoice()
        with pytest.raises(ConflictError):
            invoice_service.create_credit_note(invoice.id, "RETURN")

    def test_credit_note_on_partially_paid_rejected(self, make_invoice, cashier):
        invoice = make_invoice()
        payment_service.create_payment(invoice.id, 100, "CARD", cashier.id)
        with pytest.raises(ConflictError):
            invoice_service.create_credit_note(invoice.id, "RETURN")

    def test_credit_note_for_missing_original(self, company):
        with pytest.raises(NotFoundError):
            invoice_service.create_credit_note(4242, "RETURN")

    def test_reason_code_required(self, make_invoice, cashier):
        original = _paid_invoice(make_invoice, cashier)
        with pytest.raises(ValidationError):
            invoice_service.create_credit_note(original.id, "")


class TestDuplicate:

    def test_duplicate_starts_clean(self, make_invoice, cashier):
        original = _paid_invoice(make_invoice, cashier, subtotal_cents=5000, customer_name="Cafe Sacher")

        copy = invoice_service.duplicate_invoice(original.id)

        assert copy.id != original.id
        assert copy.invoice_number != original.invoice_number
        assert copy.status == INVOICE_DRAFT
        assert copy.customer_name == "Cafe Sacher"
        assert copy.total_cents == original.total_cents
        assert copy.paid_cents == 0
        assert copy.remaining_cents == copy.total_cents
        assert copy.tse_signature == ""
        assert db.session.query(PaymentDetails).filter_by(invoice_id=copy.id).count() == 0

    def test_credit_note_cannot_be_duplicated(self, make_invoice, cashier):
        original = _paid_invoice(make_invoice, cashier)
        credit = invoice_service.create_credit_note(original.id, "RETURN")
        with pytest.raises(ConflictError):
            invoice_service.duplicate_invoice(credit.id)


# =============================================================================
# API
# =============================================================================


class TestInvoiceApi:

    def test_create_with_euro_amounts(self, client, cashier_headers, company):
        resp = client.post("/api/invoice", json={
            "companyName": "Gasthaus Test GmbH",
            "companyTaxNumber": "ATU12345678",
            "subtotal": 100.00,
            "taxAmount": 20.00,
            "totalAmount": 120.00,
            "customerName": "Familie Huber",
        }, headers=cashier_headers)

        assert resp.status_code == 201
        assert resp.json["invoice"]["total_cents"] == 12000
        assert resp.json["invoice"]["remaining_cents"] == 12000

    def test_bad_tax_number_returns_400(self, client, cashier_headers):
        resp = client.post("/api/invoice", json={
            "companyName": "X", "companyTaxNumber": "DE123", "subtotal": 1, "taxAmount": 0, "totalAmount": 1,
        }, headers=cashier_headers)
        assert resp.status_code == 400

    def test_duplicate_number_returns_409(self, client, cashier_headers, make_invoice):
        make_invoice(invoice_number="INV-777")
        resp = client.post("/api/invoice", json={
            "invoiceNumber": "INV-777",
            "companyName": "Gasthaus Test GmbH", "companyTaxNumber": "ATU12345678",
            "subtotal": 10, "taxAmount": 2, "totalAmount": 12,
        }, headers=cashier_headers)
        assert resp.status_code == 409

    def test_credit_note_roles_and_conflict(self, client, cashier, cashier_headers, manager_headers, make_invoice):
        original = _paid_invoice(make_invoice, cashier)
        body = {"reasonCode": "RETURN", "reasonText": "Reklamation"}

        resp = client.post(f"/api/invoice/{original.id}/credit-note", json=body, headers=cashier_headers)
        assert resp.status_code == 403

        resp = client.post(f"/api/invoice/{original.id}/credit-note", json=body, headers=manager_headers)
        assert resp.status_code == 201
        assert resp.json["invoice"]["total_cents"] == -original.total_cents
        assert resp.json["invoice"]["original_invoice_id"] == original.id

        resp = client.post(f"/api/invoice/{original.id}/credit-note", json=body, headers=manager_headers)
        assert resp.status_code == 409

    def test_delete_requires_manager(self, client, cashier_headers, manager_headers, make_invoice):
        invoice = make_invoice()
        assert client.delete(f"/api/invoice/{invoice.id}", headers=cashier_headers).status_code == 403
        assert client.delete(f"/api/invoice/{invoice.id}", headers=manager_headers).status_code == 200
        assert client.get(f"/api/invoice/{invoice.id}", headers=manager_headers).status_code == 404

    @pytest.mark.parametrize("body", [{"invoiceDate": None}, {"kassenId": None}])
    def test_update_with_null_required_field_returns_400(self, client, cashier_headers, make_invoice, body):
        invoice = make_invoice()
        resp = client.put(f"/api/invoice/{invoice.id}", json=body, headers=cashier_headers)
        assert resp.status_code == 400

    def test_duplicate_endpoint(self, client, cashier_headers, make_invoice):
        invoice = make_invoice()
        resp = client.post(f"/api/invoice/{invoice.id}/duplicate", headers=cashier_headers)
        assert resp.status_code == 201
        assert resp.json["invoice"]["status"] == "DRAFT"
        assert resp.json["invoice"]["id"] != invoice.id

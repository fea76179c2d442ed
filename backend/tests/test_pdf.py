"""
Invoice PDF rendering tests.
"""

import pytest

from kasse.services import invoice_service, payment_service, pdf_service, tse_service


@pytest.mark.parametrize("cents,expected", [
    (0, "0,00 EUR"),
    (None, "0,00 EUR"),
    (1999, "19,99 EUR"),
    (1234567, "12.345,67 EUR"),
    (-12000, "-120,00 EUR"),
])
def test_format_eur(cents, expected):
    assert pdf_service.format_eur(cents) == expected


def test_wrap_hard_splits_long_tokens():
    lines = pdf_service._wrap("TSE-" + "A" * 100, 40)
    assert all(len(line) <= 40 for line in lines)
    assert "".join(lines) == "TSE-" + "A" * 100


class TestRenderInvoice:

    def test_unsigned_draft(self, make_invoice):
        pdf = pdf_service.render_invoice(make_invoice())
        assert pdf.startswith(b"%PDF")

    def test_signed_invoice_with_items(self, connected_tse, make_invoice):
        items = [
            {"product_name": "Wiener Schnitzel", "quantity": 2, "unit_price_cents": 1500,
             "line_total_cents": 3000, "tax_type": "REDUCED"},
        ] * 40
        invoice = make_invoice(invoice_items=items)
        signed = tse_service.sign_invoice(invoice.id)

        pdf = pdf_service.render_invoice(signed)
        assert pdf.startswith(b"%PDF")
        assert signed.tse_signature

    def test_credit_note(self, make_invoice, cashier):
        invoice = make_invoice()
        payment_service.create_payment(invoice.id, invoice.total_cents, "CASH", cashier.id)
        credit = invoice_service.create_credit_note(invoice.id, "RETURN", "Reklamation")

        assert pdf_service.render_invoice(credit).startswith(b"%PDF")


class TestPdfApi:

    def test_pdf_endpoint(self, client, cashier_headers, make_invoice):
        invoice = make_invoice()
        resp = client.get(f"/api/invoice/{invoice.id}/pdf", headers=cashier_headers)

        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert invoice.invoice_number in resp.headers["Content-Disposition"]
        assert resp.data.startswith(b"%PDF")

    def test_pdf_for_missing_invoice(self, client, cashier_headers):
        assert client.get("/api/invoice/999/pdf", headers=cashier_headers).status_code == 404

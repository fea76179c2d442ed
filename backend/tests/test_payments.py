"""
Payment processor tests.

Verifies:
- Split payments move an invoice DRAFT -> PARTIALLY_PAID -> PAID
- Cancellation reverses the invoice balance and is idempotent
- A cancelled payment cannot be reinstated
- Cash payments against an open register write SALE / CANCEL movements
- Cash taken while the register was closed never moves its balance
"""

import re

import pytest

from kasse.extensions import db
from kasse.models import CashRegister, CashRegisterTransaction, Invoice, PaymentDetails
from kasse.models.invoices import INVOICE_PAID, INVOICE_PARTIALLY_PAID, INVOICE_SENT
from kasse.models.payments import PAYMENT_CANCELLED, PAYMENT_COMPLETED
from kasse.models.registers import TXN_CANCEL, TXN_SALE
from kasse.services import invoice_service, payment_service, register_service
from kasse.validation import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def invoice_100(make_invoice):
    """Invoice over exactly 100.00 EUR gross."""
    return make_invoice(subtotal_cents=8333, tax_cents=1667)


@pytest.fixture
def open_register(administrator, cashier):
    register = register_service.create_register("Bar", 10000, administrator.id)
    return register_service.open_register(register.id, cashier.id, 10000)


def _reload(model, entity_id):
    db.session.expire_all()
    return db.session.get(model, entity_id)


class TestSplitPayments:

    def test_partial_then_full_then_cancel(self, cashier, manager, invoice_100):
        first = payment_service.create_payment(invoice_100.id, 6000, "CARD", cashier.id)
        invoice = _reload(Invoice, invoice_100.id)
        assert invoice.status == INVOICE_PARTIALLY_PAID
        assert invoice.paid_cents == 6000
        assert invoice.remaining_cents == 4000

        second = payment_service.create_payment(invoice_100.id, 4000, "CASH", cashier.id)
        invoice = _reload(Invoice, invoice_100.id)
        assert invoice.status == INVOICE_PAID
        assert invoice.paid_cents == 10000
        assert invoice.remaining_cents == 0
        assert invoice.payment_method == "CASH"

        payment_service.update_status(second.id, PAYMENT_CANCELLED, manager.id)
        invoice = _reload(Invoice, invoice_100.id)
        assert invoice.status == INVOICE_PARTIALLY_PAID
        assert invoice.paid_cents == 6000
        assert invoice.remaining_cents == 4000

        payments = payment_service.list_invoice_payments(invoice_100.id)
        assert [p.id for p in payments] == [first.id, second.id]
        assert payments[1].status == PAYMENT_CANCELLED
        assert payments[1].cancelled_by_user_id == manager.id
        assert payments[1].cancelled_at is not None

        completed = payment_service.list_invoice_payments(invoice_100.id, include_cancelled=False)
        assert [p.id for p in completed] == [first.id]

    def test_cancelling_only_payment_returns_invoice_to_sent(self, cashier, manager, invoice_100):
        payment = payment_service.create_payment(invoice_100.id, 10000, "CARD", cashier.id)
        payment_service.update_status(payment.id, PAYMENT_CANCELLED, manager.id)

        invoice = _reload(Invoice, invoice_100.id)
        assert invoice.status == INVOICE_SENT
        assert invoice.paid_cents == 0
        assert invoice.remaining_cents == 10000

    def test_overpayment_marks_paid(self, cashier, invoice_100):
        payment_service.create_payment(invoice_100.id, 12000, "CASH", cashier.id)
        invoice = _reload(Invoice, invoice_100.id)
        assert invoice.status == INVOICE_PAID
        assert invoice.remaining_cents == -2000

    def test_receipt_number_format(self, cashier, invoice_100):
        payment = payment_service.create_payment(invoice_100.id, 1000, "CARD", cashier.id)
        assert re.fullmatch(r"R-\d{8}-[0-9A-F]{6}", payment.receipt_number)

    def test_proportional_tax_recorded(self, cashier, invoice_100):
        payment = payment_service.create_payment(invoice_100.id, 6000, "CARD", cashier.id)
        assert payment.tax_cents == 1000


class TestPaymentValidation:

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount_rejected(self, cashier, invoice_100, amount):
        with pytest.raises(ValidationError):
            payment_service.create_payment(invoice_100.id, amount, "CASH", cashier.id)
        assert db.session.query(PaymentDetails).count() == 0

    def test_unknown_method_rejected(self, cashier, invoice_100):
        with pytest.raises(ValidationError):
            payment_service.create_payment(invoice_100.id, 100, "BITCOIN", cashier.id)

    def test_unknown_invoice(self, cashier):
        with pytest.raises(NotFoundError):
            payment_service.create_payment(9999, 100, "CASH", cashier.id)

    def test_deleted_invoice_cannot_be_paid(self, cashier, invoice_100):
        invoice_service.delete_invoice(invoice_100.id)
        with pytest.raises(NotFoundError):
            payment_service.create_payment(invoice_100.id, 100, "CASH", cashier.id)

    def test_credit_note_cannot_be_paid(self, cashier, manager, invoice_100):
        payment_service.create_payment(invoice_100.id, 10000, "CARD", cashier.id)
        credit = invoice_service.create_credit_note(invoice_100.id, "RETURN")

        with pytest.raises(ConflictError):
            payment_service.create_payment(credit.id, 100, "CASH", cashier.id)


class TestStatusTransitions:

    def test_double_cancel_is_noop(self, cashier, manager, invoice_100):
        payment = payment_service.create_payment(invoice_100.id, 6000, "CARD", cashier.id)
        payment_service.update_status(payment.id, PAYMENT_CANCELLED, manager.id)
        payment_service.update_status(payment.id, PAYMENT_CANCELLED, manager.id)

        invoice = _reload(Invoice, invoice_100.id)
        assert invoice.paid_cents == 0
        assert invoice.remaining_cents == 10000

    def test_reinstating_cancelled_payment_conflicts(self, cashier, manager, invoice_100):
        payment = payment_service.create_payment(invoice_100.id, 6000, "CARD", cashier.id)
        payment_service.update_status(payment.id, PAYMENT_CANCELLED, manager.id)

        with pytest.raises(ConflictError):
            payment_service.update_status(payment.id, PAYMENT_COMPLETED, manager.id)

        db.session.rollback()
        assert _reload(PaymentDetails, payment.id).status == PAYMENT_CANCELLED

    def test_unknown_status_rejected(self, cashier, manager, invoice_100):
        payment = payment_service.create_payment(invoice_100.id, 6000, "CARD", cashier.id)
        with pytest.raises(ValidationError):
            payment_service.update_status(payment.id, "REFUNDED", manager.id)


class TestCashRegisterMovements:

    def test_cash_payment_moves_register_balance(self, cashier, manager, invoice_100, open_register):
        payment = payment_service.create_payment(
            invoice_100.id, 6000, "CASH", cashier.id, cash_register_id=open_register.id,
        )
        register = _reload(CashRegister, open_register.id)
        assert register.current_balance_cents == 16000

        sale = db.session.query(CashRegisterTransaction).filter_by(transaction_type=TXN_SALE).one()
        assert sale.amount_cents == 6000
        assert sale.payment_id == payment.id

        payment_service.update_status(payment.id, PAYMENT_CANCELLED, manager.id)
        register = _reload(CashRegister, open_register.id)
        assert register.current_balance_cents == 10000

        cancel = db.session.query(CashRegisterTransaction).filter_by(transaction_type=TXN_CANCEL).one()
        assert cancel.amount_cents == -6000

    def test_card_payment_leaves_register_alone(self, cashier, invoice_100, open_register):
        payment_service.create_payment(invoice_100.id, 6000, "CARD", cashier.id, cash_register_id=open_register.id)
        assert _reload(CashRegister, open_register.id).current_balance_cents == 10000
        assert db.session.query(CashRegisterTransaction).filter_by(transaction_type=TXN_SALE).count() == 0

    def test_cash_taken_while_register_closed_is_not_reversed_later(self, administrator, cashier, manager, make_invoice):
        register = register_service.create_register("Terrasse", 0, administrator.id)
        invoice = make_invoice(subtotal_cents=8333, tax_cents=1667, cash_register_id=register.id)

        payment = payment_service.create_payment(invoice.id, 5000, "CASH", cashier.id)
        assert payment.cash_register_id is None

        register_service.open_register(register.id, cashier.id, 10000)
        payment_service.update_status(payment.id, PAYMENT_CANCELLED, manager.id)

        assert _reload(CashRegister, register.id).current_balance_cents == 10000
        assert db.session.query(CashRegisterTransaction).filter_by(transaction_type=TXN_CANCEL).count() == 0

    def test_unknown_register_rejected(self, cashier, invoice_100):
        with pytest.raises(NotFoundError):
            payment_service.create_payment(invoice_100.id, 6000, "CASH", cashier.id, cash_register_id=999)


# =============================================================================
# API
# =============================================================================


class TestPaymentApi:

    def test_create_payment_in_euros(self, client, cashier_headers, invoice_100):
        resp = client.post("/api/payment", json={
            "invoiceId": invoice_100.id,
            "amount": 60.00,
            "paymentMethod": "card",
        }, headers=cashier_headers)

        assert resp.status_code == 201
        assert resp.json["payment"]["amount_cents"] == 6000
        assert resp.json["payment"]["method"] == "CARD"
        assert resp.json["invoice"]["status"] == "PARTIALLY_PAID"
        assert resp.json["invoice"]["remaining_cents"] == 4000

    def test_zero_amount_returns_400(self, client, cashier_headers, invoice_100):
        resp = client.post("/api/payment", json={
            "invoiceId": invoice_100.id, "amount": 0, "paymentMethod": "CASH",
        }, headers=cashier_headers)
        assert resp.status_code == 400

    def test_cashier_cannot_cancel(self, client, cashier, cashier_headers, invoice_100):
        payment = payment_service.create_payment(invoice_100.id, 6000, "CARD", cashier.id)
        resp = client.put(f"/api/payment/{payment.id}/status",
                          json={"status": "CANCELLED"}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_manager_cancel_and_reinstate(self, client, cashier, manager_headers, invoice_100):
        payment = payment_service.create_payment(invoice_100.id, 6000, "CARD", cashier.id)

        resp = client.put(f"/api/payment/{payment.id}/status",
                          json={"status": "CANCELLED"}, headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["invoice"]["paid_cents"] == 0

        resp = client.put(f"/api/payment/{payment.id}/status",
                          json={"status": "CANCELLED"}, headers=manager_headers)
        assert resp.status_code == 200

        resp = client.put(f"/api/payment/{payment.id}/status",
                          json={"status": "COMPLETED"}, headers=manager_headers)
        assert resp.status_code == 409

    def test_list_for_unknown_invoice_returns_404(self, client, cashier_headers):
        resp = client.get("/api/payment/invoice/424242", headers=cashier_headers)
        assert resp.status_code == 404

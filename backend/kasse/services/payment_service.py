# Overview: Service-layer operations for payments; encapsulates business logic and database work.

"""
Payment Processor

WHY: A payment moves an invoice towards PAID. Payments and the invoice
balance they change must never drift apart.

DESIGN PRINCIPLES:
- The payment insert and the invoice paid/remaining/status update are one
  transaction, with the invoice row locked (SELECT ... FOR UPDATE)
- Cancellation is a compensating update; the payment row is kept
- Cancelling twice is a no-op; a cancelled payment cannot be reinstated
- Cash payments against an open register move the register balance
"""

import secrets

from flask import current_app

from ..extensions import db
from ..models import CashRegister, CashRegisterTransaction, Invoice, PaymentDetails
from ..models.invoices import (
    INVOICE_SENT, INVOICE_PARTIALLY_PAID, INVOICE_PAID,
)
from ..models.payments import (
    METHOD_CASH, PAYMENT_METHODS,
    PAYMENT_COMPLETED, PAYMENT_CANCELLED, PAYMENT_STATUSES,
)
from ..models.registers import REGISTER_OPEN, TXN_SALE
from ..validation import ConflictError, NotFoundError, ValidationError, MAX_AMOUNT_CENTS
from kasse.time_utils import day_stamp, utcnow
from .concurrency import lock_for_update, run_with_retry
from .repository import Repository
from . import register_service


_payments = Repository(PaymentDetails, "Payment")


def generate_receipt_number(now=None) -> str:
    """R-YYYYMMDD-<6 hex>."""
    now = now or utcnow()
    return f"R-{day_stamp(now)}-{secrets.token_hex(3).upper()}"


def apply_invoice_status(invoice: Invoice) -> None:
    """
    Recompute remaining and derive status from paid/remaining.

    PAID when nothing remains, PARTIALLY_PAID when something was paid,
    otherwise back to SENT.
    """
    invoice.recompute_remaining()
    if invoice.remaining_cents <= 0:
        invoice.status = INVOICE_PAID
    elif invoice.paid_cents > 0:
        invoice.status = INVOICE_PARTIALLY_PAID
    else:
        invoice.status = INVOICE_SENT


def _load_invoice_locked(invoice_id: int) -> Invoice:
    invoice = lock_for_update(
        db.session.query(Invoice).filter_by(id=invoice_id, is_active=True)
    ).first()
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _open_register_for_cash(register_id: int | None, *, required: bool = False) -> CashRegister | None:
    if register_id is None:
        return None
    register = lock_for_update(
        db.session.query(CashRegister).filter_by(id=register_id, is_active=True)
    ).first()
    if not register:
        if not required:
            return None
        raise NotFoundError(f"Cash register {register_id} not found")
    if register.status != REGISTER_OPEN:
        return None
    return register


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def create_payment(
    invoice_id: int,
    amount_cents: int,
    method: str,
    user_id: int,
    customer_id: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
    transaction_id: str | None = None,
    cash_register_id: int | None = None,
) -> PaymentDetails:
    """
    Record a payment against an invoice.

    Args:
        invoice_id: Invoice being paid
        amount_cents: Amount received (must be > 0)
        method: CASH, CARD or VOUCHER
        user_id: User taking the payment
        cash_register_id: Register the money went into (cash only moves the balance)

    Returns:
        PaymentDetails with status COMPLETED

    Raises:
        ValidationError: amount <= 0 or unknown method
        NotFoundError: invoice missing or deactivated
        ConflictError: invoice is a credit note
    """
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {PAYMENT_METHODS}")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount must be an integer amount in cents")
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be positive")
    if amount_cents > MAX_AMOUNT_CENTS:
        raise ValidationError("Payment amount exceeds maximum")

    def _op():
        invoice = _load_invoice_locked(invoice_id)
        if invoice.is_credit_note:
            raise ConflictError("Payments cannot be recorded against a credit note")

        register_id = cash_register_id if cash_register_id is not None else invoice.cash_register_id
        register = None
        if method == METHOD_CASH:
            register = _open_register_for_cash(register_id, required=cash_register_id is not None)

        now = utcnow()
        payment = PaymentDetails(
            invoice_id=invoice.id,
            customer_id=customer_id,
            amount_cents=amount_cents,
            tax_cents=_proportional_tax(invoice, amount_cents),
            method=method,
            status=PAYMENT_COMPLETED,
            reference=reference,
            notes=notes,
            transaction_id=transaction_id,
            receipt_number=generate_receipt_number(now),
            kassen_id=invoice.kassen_id or None,
            # Cash is linked to a register only when it lands in an open drawer
            cash_register_id=register.id if register else (None if method == METHOD_CASH else register_id),
            tse_signature=invoice.tse_signature or None,
            created_by_user_id=user_id,
            created_at=now,
        )
        db.session.add(payment)
        db.session.flush()

        invoice.paid_cents += amount_cents
        apply_invoice_status(invoice)
        invoice.payment_method = method
        invoice.payment_reference = reference
        invoice.payment_date = now

        if register:
            register_service.record_cash_sale(register, amount_cents, payment.id, user_id)

        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info(
        "Payment %s recorded: invoice=%s amount=%s method=%s",
        payment.receipt_number, invoice_id, amount_cents, method,
    )
    return payment


def _has_cash_sale(payment_id: int) -> bool:
    """True when the payment actually put money into a register drawer."""
    return db.session.query(CashRegisterTransaction.id).filter_by(
        payment_id=payment_id,
        transaction_type=TXN_SALE,
    ).first() is not None


def _proportional_tax(invoice: Invoice, amount_cents: int) -> int:
    if invoice.total_cents <= 0:
        return 0
    return (amount_cents * invoice.tax_cents + invoice.total_cents // 2) // invoice.total_cents


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def update_status(payment_id: int, new_status: str, user_id: int) -> PaymentDetails:
    """
    Change a payment's status.

    COMPLETED -> CANCELLED reverses the payment's effect on its invoice in
    the same transaction. CANCELLED -> CANCELLED changes nothing.

    Raises:
        ValidationError: unknown status
        NotFoundError: payment missing
        ConflictError: CANCELLED -> COMPLETED
    """
    if new_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {new_status}. Must be one of {PAYMENT_STATUSES}")

    def _op():
        payment = _payments.require(payment_id, for_update=True)

        if payment.status == new_status:
            return payment

        if payment.status == PAYMENT_CANCELLED:
            raise ConflictError("A cancelled payment cannot be reinstated", status=payment.status)

        # COMPLETED -> CANCELLED
        if payment.invoice_id is not None:
            invoice = lock_for_update(db.session.query(Invoice).filter_by(id=payment.invoice_id)).first()
            if invoice:
                invoice.paid_cents -= payment.amount_cents
                apply_invoice_status(invoice)

        if payment.method == METHOD_CASH and _has_cash_sale(payment.id):
            register = _open_register_for_cash(payment.cash_register_id)
            if register:
                register_service.record_cash_cancel(register, payment.amount_cents, payment.id, user_id)

        payment.status = PAYMENT_CANCELLED
        payment.cancelled_at = utcnow()
        payment.cancelled_by_user_id = user_id
        db.session.commit()
        current_app.logger.info("Payment %s cancelled by user %s", payment.id, user_id)
        return payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int) -> PaymentDetails:
    return _payments.require(payment_id)


def list_invoice_payments(invoice_id: int, include_cancelled: bool = True) -> list[PaymentDetails]:
    if not db.session.get(Invoice, invoice_id):
        raise NotFoundError(f"Invoice {invoice_id} not found")
    query = _payments.query().filter(PaymentDetails.invoice_id == invoice_id)
    if not include_cancelled:
        query = query.filter(PaymentDetails.status == PAYMENT_COMPLETED)
    return query.order_by(PaymentDetails.created_at.asc(), PaymentDetails.id.asc()).all()

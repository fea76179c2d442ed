from __future__ import annotations

from ..extensions import db
from kasse.time_utils import to_utc_z
from .base import SoftDeleteMixin


METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_VOUCHER = "VOUCHER"

PAYMENT_METHODS = [METHOD_CASH, METHOD_CARD, METHOD_VOUCHER]

PAYMENT_COMPLETED = "COMPLETED"
PAYMENT_CANCELLED = "CANCELLED"

PAYMENT_STATUSES = [PAYMENT_COMPLETED, PAYMENT_CANCELLED]


class PaymentDetails(SoftDeleteMixin, db.Model):
    """
    Money received against an invoice.

    WHY: Cancellation is a compensating update on the invoice, never a delete,
    so the payment row stays as the audit record of what happened.
    """
    __tablename__ = "payment_details"
    __table_args__ = (
        db.Index("ix_payment_details_invoice_status", "invoice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_COMPLETED, index=True)

    reference = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    transaction_id = db.Column(db.String(100), nullable=True)
    receipt_number = db.Column(db.String(50), nullable=True, index=True)

    # External register identifier as printed on the receipt; resolved to
    # cash_registers.id by the invoice backfill
    kassen_id = db.Column(db.String(50), nullable=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True)
    tse_signature = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    invoice = db.relationship("Invoice", foreign_keys=[invoice_id], backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "tax_cents": self.tax_cents,
            "method": self.method,
            "status": self.status,
            "reference": self.reference,
            "notes": self.notes,
            "transaction_id": self.transaction_id,
            "receipt_number": self.receipt_number,
            "kassen_id": self.kassen_id,
            "cash_register_id": self.cash_register_id,
            "tse_signature": self.tse_signature,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "is_active": self.is_active,
        }

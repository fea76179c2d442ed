from __future__ import annotations

from ..extensions import db
from kasse.time_utils import to_utc_z
from .base import SoftDeleteMixin


INVOICE_DRAFT = "DRAFT"
INVOICE_SENT = "SENT"
INVOICE_PARTIALLY_PAID = "PARTIALLY_PAID"
INVOICE_PAID = "PAID"
INVOICE_CREDIT_NOTE = "CREDIT_NOTE"

INVOICE_STATUSES = [
    INVOICE_DRAFT,
    INVOICE_SENT,
    INVOICE_PARTIALLY_PAID,
    INVOICE_PAID,
    INVOICE_CREDIT_NOTE,
]

DOC_INVOICE = "INVOICE"
DOC_CREDIT_NOTE = "CREDIT_NOTE"


class Invoice(SoftDeleteMixin, db.Model):
    """
    Invoice or credit note (Stornobeleg).

    INVARIANTS:
    - remaining_cents == total_cents - paid_cents after every write
    - A credit note negates its original's subtotal/tax/total/paid and links
      back through original_invoice_id; at most one active credit note per original
    - source_payment_id is the idempotency key for rows synthesized from payments

    Rows are soft-deleted (is_active=False), never removed.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("source_payment_id", name="uq_invoices_source_payment"),
        db.Index("ix_invoices_number_active", "invoice_number", "is_active"),
        db.Index("ix_invoices_original_doc", "original_invoice_id", "document_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(50), nullable=False)
    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_DRAFT, index=True)
    document_type = db.Column(db.String(16), nullable=False, default=DOC_INVOICE, index=True)

    # Amounts (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False, default=0)

    # Customer
    customer_name = db.Column(db.String(100), nullable=True)
    customer_email = db.Column(db.String(100), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=True)
    customer_address = db.Column(db.String(200), nullable=True)
    customer_tax_number = db.Column(db.String(20), nullable=True)

    # Company (RKSV mandatory)
    company_name = db.Column(db.String(100), nullable=False)
    company_tax_number = db.Column(db.String(20), nullable=False)
    company_address = db.Column(db.String(200), nullable=False, default="")
    company_phone = db.Column(db.String(20), nullable=True)
    company_email = db.Column(db.String(100), nullable=True)

    # Fiscal signature (blank until signed)
    tse_signature = db.Column(db.String(500), nullable=False, default="")
    tse_timestamp = db.Column(db.DateTime(timezone=True), nullable=True)
    kassen_id = db.Column(db.String(50), nullable=False, default="")
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)

    # Payment summary
    payment_method = db.Column(db.String(16), nullable=True)
    payment_reference = db.Column(db.String(50), nullable=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Flexible payloads
    invoice_items = db.Column(db.JSON, nullable=True)
    tax_details = db.Column(db.JSON, nullable=False, default=dict)

    # Provenance
    cart_id = db.Column(db.String(36), nullable=True, index=True)
    # payment_details.id of the payment this row was synthesized from (no FK: payments reference invoices)
    source_payment_id = db.Column(db.Integer, nullable=True)
    original_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)
    storno_reason_code = db.Column(db.String(50), nullable=True)
    storno_reason_text = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    original_invoice = db.relationship("Invoice", remote_side=[id], foreign_keys=[original_invoice_id])
    cash_register = db.relationship("CashRegister", foreign_keys=[cash_register_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_credit_note(self) -> bool:
        return self.document_type == DOC_CREDIT_NOTE

    def recompute_remaining(self) -> None:
        self.remaining_cents = self.total_cents - self.paid_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "invoice_date": to_utc_z(self.invoice_date),
            "due_date": to_utc_z(self.due_date),
            "status": self.status,
            "document_type": self.document_type,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "customer_tax_number": self.customer_tax_number,
            "company_name": self.company_name,
            "company_tax_number": self.company_tax_number,
            "company_address": self.company_address,
            "company_phone": self.company_phone,
            "company_email": self.company_email,
            "tse_signature": self.tse_signature,
            "tse_timestamp": to_utc_z(self.tse_timestamp) if self.tse_timestamp else None,
            "kassen_id": self.kassen_id,
            "cash_register_id": self.cash_register_id,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "payment_date": to_utc_z(self.payment_date) if self.payment_date else None,
            "invoice_items": self.invoice_items or [],
            "tax_details": self.tax_details or {},
            "cart_id": self.cart_id,
            "source_payment_id": self.source_payment_id,
            "original_invoice_id": self.original_invoice_id,
            "storno_reason_code": self.storno_reason_code,
            "storno_reason_text": self.storno_reason_text,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }

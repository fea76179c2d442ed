# Overview: Service-layer operations for invoices and credit notes; encapsulates business logic and database work.

"""
Invoice Ledger

WHY: Invoices are the legal record of a sale. Once sent or paid they are
never edited or deleted; corrections happen through credit notes
(Stornobelege) that negate the original.

DESIGN PRINCIPLES:
- Append-mostly: only DRAFT invoices are editable, deletion is a soft delete
- Invoice numbers are unique among active invoices
- remaining_cents == total_cents - paid_cents on every row
- At most one active credit note per original invoice
"""

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import CompanySettings, Invoice
from ..models.invoices import (
    INVOICE_DRAFT, INVOICE_SENT, INVOICE_PAID, INVOICE_CREDIT_NOTE, INVOICE_STATUSES,
    DOC_INVOICE, DOC_CREDIT_NOTE,
)
from ..validation import ConflictError, NotFoundError, ValidationError
from kasse.time_utils import day_stamp, utcnow
from .concurrency import run_with_retry
from .repository import Repository


DEFAULT_PAYMENT_TERM_DAYS = 30
CREDIT_NOTE_SUFFIX = "-ST"

CREDITABLE_STATUSES = (INVOICE_PAID, INVOICE_SENT)

# Columns a caller may set when creating or editing an invoice
EDITABLE_FIELDS = (
    "invoice_number", "invoice_date", "due_date",
    "subtotal_cents", "tax_cents", "total_cents",
    "customer_name", "customer_email", "customer_phone", "customer_address", "customer_tax_number",
    "company_name", "company_tax_number", "company_address", "company_phone", "company_email",
    "cash_register_id", "kassen_id",
    "payment_method", "payment_reference", "payment_date",
    "invoice_items", "tax_details", "cart_id",
)

COPIED_ON_DUPLICATE = (
    "subtotal_cents", "tax_cents", "total_cents",
    "customer_name", "customer_email", "customer_phone", "customer_address", "customer_tax_number",
    "company_name", "company_tax_number", "company_address", "company_phone", "company_email",
    "cash_register_id", "invoice_items", "tax_details",
)

_invoices = Repository(Invoice, "Invoice")


# =============================================================================
# HELPERS
# =============================================================================

def default_company_profile() -> dict:
    """Company fields from the settings row, falling back to app config."""
    settings = db.session.query(CompanySettings).order_by(CompanySettings.id.asc()).first()
    if settings:
        return settings.company_profile()
    cfg = current_app.config
    return {
        "company_name": cfg.get("COMPANY_NAME"),
        "company_tax_number": cfg.get("COMPANY_TAX_NUMBER"),
        "company_address": cfg.get("COMPANY_ADDRESS") or "",
        "company_phone": cfg.get("COMPANY_PHONE") or None,
        "company_email": cfg.get("COMPANY_EMAIL") or None,
    }


def is_valid_tax_number(tax_number: str | None) -> bool:
    """Austrian UID: "ATU" followed by 8 characters."""
    return bool(tax_number) and tax_number.startswith("ATU") and len(tax_number) == 11


def generate_invoice_number(now: datetime | None = None) -> str:
    """
    Next free number of the form INV-YYYYMMDD-NNNN.

    Counts every invoice for the day (including deactivated ones) so numbers
    are never reused.
    """
    now = now or utcnow()
    prefix = f"INV-{day_stamp(now)}-"
    sequence = db.session.query(Invoice).filter(Invoice.invoice_number.like(f"{prefix}%")).count() + 1
    number = f"{prefix}{sequence:04d}"
    while _number_in_use(number):
        sequence += 1
        number = f"{prefix}{sequence:04d}"
    return number


def _number_in_use(invoice_number: str, exclude_id: int | None = None) -> bool:
    query = _invoices.query().filter(Invoice.invoice_number == invoice_number)
    if exclude_id is not None:
        query = query.filter(Invoice.id != exclude_id)
    return query.first() is not None


def _validate(values: dict) -> None:
    if not values.get("company_name"):
        raise ValidationError("company_name is required")

    if not is_valid_tax_number(values.get("company_tax_number")):
        raise ValidationError(
            "company_tax_number must start with ATU and be 11 characters long",
            company_tax_number=values.get("company_tax_number"),
        )

    for field in ("subtotal_cents", "tax_cents", "total_cents"):
        amount = values.get(field)
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise ValidationError(f"{field} must be an integer amount in cents")
        if amount < 0:
            raise ValidationError(f"{field} must not be negative")

    if values["total_cents"] != values["subtotal_cents"] + values["tax_cents"]:
        raise ValidationError(
            "total must equal subtotal plus tax",
            subtotal_cents=values["subtotal_cents"],
            tax_cents=values["tax_cents"],
            total_cents=values["total_cents"],
        )

    if values.get("invoice_date") and values.get("due_date") and values["due_date"] < values["invoice_date"]:
        raise ValidationError("due_date must not be before invoice_date")


# =============================================================================
# CREATE / UPDATE
# =============================================================================

def build_invoice(fields: dict, *, user_id: int | None = None) -> Invoice:
    """
    Validate and stage a DRAFT invoice in the current session. Does not commit.

    Used by `create_invoice` and by cart checkout, which commits the invoice
    together with the cart status change.
    """
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown invoice fields: {', '.join(sorted(unknown))}")

    values = {
        "subtotal_cents": 0,
        "tax_cents": 0,
        "total_cents": 0,
    }
    values.update({k: v for k, v in fields.items() if v is not None})

    now = utcnow()
    values.setdefault("invoice_date", now)
    values.setdefault("due_date", values["invoice_date"] + timedelta(days=DEFAULT_PAYMENT_TERM_DAYS))
    values.setdefault("tax_details", {})

    _validate(values)

    number = values.get("invoice_number")
    if number:
        if _number_in_use(number):
            raise ConflictError(f"Invoice number {number} already exists", invoice_number=number)
    else:
        values["invoice_number"] = generate_invoice_number(now)

    invoice = Invoice(
        status=INVOICE_DRAFT,
        document_type=DOC_INVOICE,
        paid_cents=0,
        tse_signature="",
        created_by_user_id=user_id,
        **values,
    )
    invoice.recompute_remaining()
    return _invoices.add(invoice)


def create_invoice(fields: dict, *, user_id: int | None = None) -> Invoice:
    """
    Create a DRAFT invoice.

    Raises:
        ValidationError: missing company name, malformed ATU number, negative
            amounts or total != subtotal + tax
        ConflictError: invoice number already used by an active invoice
    """
    invoice = build_invoice(fields, user_id=user_id)
    db.session.commit()
    current_app.logger.info("Invoice created: %s total=%s", invoice.invoice_number, invoice.total_cents)
    return invoice


def update_invoice(invoice_id: int, fields: dict) -> Invoice:
    """Edit a DRAFT invoice. Sent, paid and credit-note rows are immutable."""
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown invoice fields: {', '.join(sorted(unknown))}")
    nulled = sorted(
        field for field, value in fields.items()
        if value is None and not Invoice.__table__.c[field].nullable
    )
    if nulled:
        raise ValidationError(f"Fields must not be null: {', '.join(nulled)}", fields=nulled)

    def _op():
        invoice = _invoices.require(invoice_id, for_update=True)
        if invoice.status != INVOICE_DRAFT:
            raise ConflictError(f"Only DRAFT invoices can be edited (status is {invoice.status})")

        values = {field: getattr(invoice, field) for field in EDITABLE_FIELDS}
        values.update(fields)
        _validate(values)

        number = values.get("invoice_number")
        if not number:
            raise ValidationError("invoice_number must not be empty")
        if number != invoice.invoice_number and _number_in_use(number, exclude_id=invoice.id):
            raise ConflictError(f"Invoice number {number} already exists", invoice_number=number)

        for field, value in fields.items():
            setattr(invoice, field, value)
        invoice.recompute_remaining()
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def duplicate_invoice(invoice_id: int, *, user_id: int | None = None) -> Invoice:
    """
    Clone customer, company and line data into a new DRAFT.

    The copy gets a fresh number and date, a blank signature, zero paid and
    none of the original's payments.
    """
    original = _invoices.require(invoice_id)
    if original.is_credit_note:
        raise ConflictError("Credit notes cannot be duplicated")

    fields = {field: getattr(original, field) for field in COPIED_ON_DUPLICATE}
    fields["invoice_items"] = [dict(item) for item in (original.invoice_items or [])]
    fields["tax_details"] = dict(original.tax_details or {})

    copy = build_invoice(fields, user_id=user_id)
    db.session.commit()
    current_app.logger.info("Invoice %s duplicated as %s", original.invoice_number, copy.invoice_number)
    return copy


# =============================================================================
# CREDIT NOTES
# =============================================================================

def create_credit_note(
    original_id: int,
    reason_code: str,
    reason_text: str | None = None,
    *,
    user_id: int | None = None,
) -> Invoice:
    """
    Issue a credit note (Stornobeleg) that negates an invoice.

    Raises:
        NotFoundError: original missing or deactivated
        ConflictError: original not PAID/SENT, or already credited
    """
    if not reason_code:
        raise ValidationError("reason_code is required")

    def _op():
        original = _invoices.require(original_id, for_update=True)

        if original.status not in CREDITABLE_STATUSES:
            raise ConflictError(
                f"Credit notes can only be issued for PAID or SENT invoices (status is {original.status})",
                status=original.status,
            )

        existing = _invoices.query().filter(
            Invoice.original_invoice_id == original.id,
            Invoice.document_type == DOC_CREDIT_NOTE,
        ).first()
        if existing:
            raise ConflictError(
                f"Invoice {original.invoice_number} already has credit note {existing.invoice_number}",
                credit_note_id=existing.id,
            )

        now = utcnow()
        credit = Invoice(
            invoice_number=f"{original.invoice_number}{CREDIT_NOTE_SUFFIX}",
            invoice_date=now,
            due_date=now,
            status=INVOICE_CREDIT_NOTE,
            document_type=DOC_CREDIT_NOTE,
            subtotal_cents=-original.subtotal_cents,
            tax_cents=-original.tax_cents,
            total_cents=-original.total_cents,
            paid_cents=-original.paid_cents,
            remaining_cents=0,
            customer_name=original.customer_name,
            customer_email=original.customer_email,
            customer_phone=original.customer_phone,
            customer_address=original.customer_address,
            customer_tax_number=original.customer_tax_number,
            company_name=original.company_name,
            company_tax_number=original.company_tax_number,
            company_address=original.company_address,
            company_phone=original.company_phone,
            company_email=original.company_email,
            cash_register_id=original.cash_register_id,
            invoice_items=[dict(item) for item in (original.invoice_items or [])],
            tax_details=dict(original.tax_details or {}),
            tse_signature="",
            original_invoice_id=original.id,
            storno_reason_code=reason_code,
            storno_reason_text=reason_text,
            created_by_user_id=user_id,
        )
        db.session.add(credit)
        db.session.commit()
        return credit

    credit = run_with_retry(_op)
    current_app.logger.info(
        "Credit note %s issued for invoice id=%s reason=%s",
        credit.invoice_number, original_id, reason_code,
    )
    return credit


# =============================================================================
# DELETE / QUERY
# =============================================================================

def delete_invoice(invoice_id: int) -> Invoice:
    """Soft delete. Financial rows are never physically removed."""
    invoice = _invoices.soft_delete(invoice_id)
    current_app.logger.info("Invoice %s deactivated", invoice.invoice_number)
    return invoice


def get_invoice(invoice_id: int) -> Invoice:
    return _invoices.require(invoice_id)


def list_invoices(status: str | None = None, query: str | None = None, limit: int = 200) -> list[Invoice]:
    """Active invoices, newest first, filtered by status and/or a number/customer search."""
    q = _invoices.query()
    if status:
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Invalid status: {status}. Must be one of {INVOICE_STATUSES}")
        q = q.filter(Invoice.status == status)
    if query:
        pattern = f"%{query.strip()}%"
        q = q.filter(or_(
            Invoice.invoice_number.ilike(pattern),
            Invoice.customer_name.ilike(pattern),
        ))
    return q.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).limit(limit).all()


def render_invoice_pdf(invoice_id: int) -> bytes:
    from .pdf_service import render_invoice

    invoice = _invoices.require(invoice_id)
    return render_invoice(invoice)

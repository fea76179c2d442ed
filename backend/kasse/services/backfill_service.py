# Overview: Idempotent batch job that synthesizes missing invoices from payment history.

"""
Backfill Reconciler

WHY: Payments were taken before every sale produced an invoice. This job
creates the missing PAID invoices so the ledger is complete.

DESIGN PRINCIPLES:
- Only payments without an invoice are backfilled; a payment taken against
  an active invoice is already on the ledger
- Idempotent: an invoice carries source_payment_id (unique), and the set of
  already-backfilled payment ids is loaded once up front. Re-running only
  touches payments not yet backfilled
- Failure isolation: every insert commits on its own. A failed insert is
  rolled back, the identity map cleared, and the batch continues
- Register resolution is best effort: kassen_id is matched against register
  ids, then register numbers; misses are logged and stored as NULL
"""

from dataclasses import asdict, dataclass

from flask import current_app

from ..extensions import db
from ..models import CashRegister, Invoice, PaymentDetails, active
from ..models.invoices import INVOICE_PAID, DOC_INVOICE
from ..models.payments import PAYMENT_CANCELLED
from .invoice_service import default_company_profile


BACKFILL_PREFIX = "BF-"
# Austrian standard rate, used when a payment has no tax information at all
FALLBACK_VAT_BPS = 2000


@dataclass
class BackfillResult:
    inserted: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _invoice_number_for(receipt_number: str) -> str:
    return f"{BACKFILL_PREFIX}{receipt_number}"


def _register_maps() -> tuple[dict[str, int], dict[str, int]]:
    registers = db.session.query(CashRegister.id, CashRegister.register_number).all()
    by_id = {str(reg_id): reg_id for reg_id, _ in registers}
    by_number = {number: reg_id for reg_id, number in registers if number}
    return by_id, by_number


def _resolve_register(kassen_id: str | None, by_id: dict, by_number: dict) -> int | None:
    if not kassen_id:
        return None
    if kassen_id in by_id:
        return by_id[kassen_id]
    if kassen_id in by_number:
        return by_number[kassen_id]
    return None


def _tax_for(amount_cents: int, payment_tax_cents: int, linked: dict | None) -> int:
    """
    Tax share of a gross payment amount.

    Uses the tax recorded on the payment, else the linked invoice's
    tax/total ratio, else 20% VAT included in the gross amount.
    """
    if payment_tax_cents:
        return payment_tax_cents
    if linked and linked["total_cents"] > 0:
        return (amount_cents * linked["tax_cents"] + linked["total_cents"] // 2) // linked["total_cents"]
    return (amount_cents * FALLBACK_VAT_BPS + (10000 + FALLBACK_VAT_BPS) // 2) // (10000 + FALLBACK_VAT_BPS)


def _snapshot_payments() -> list[dict]:
    """Plain-dict copies, so rows survive expunge_all() after a failed insert."""
    payments = active(PaymentDetails).filter(
        PaymentDetails.receipt_number.isnot(None),
        PaymentDetails.receipt_number != "",
    ).order_by(PaymentDetails.id.asc()).all()

    linked_ids = {p.invoice_id for p in payments if p.invoice_id is not None}
    linked = {}
    if linked_ids:
        for inv in db.session.query(Invoice).filter(Invoice.id.in_(linked_ids)).all():
            linked[inv.id] = {
                "is_active": inv.is_active,
                "total_cents": inv.total_cents,
                "tax_cents": inv.tax_cents,
                "customer_name": inv.customer_name,
                "customer_email": inv.customer_email,
                "customer_tax_number": inv.customer_tax_number,
                "invoice_items": inv.invoice_items,
                "tax_details": inv.tax_details,
            }

    return [
        {
            "id": p.id,
            "status": p.status,
            "amount_cents": p.amount_cents,
            "tax_cents": p.tax_cents or 0,
            "method": p.method,
            "reference": p.reference,
            "receipt_number": p.receipt_number,
            "kassen_id": p.kassen_id,
            "tse_signature": p.tse_signature,
            "created_at": p.created_at,
            "created_by_user_id": p.created_by_user_id,
            "linked": linked.get(p.invoice_id),
        }
        for p in payments
    ]


def _build_invoice(payment: dict, company: dict, register_id: int | None) -> Invoice:
    linked = payment["linked"] or {}
    total = payment["amount_cents"]
    tax = _tax_for(total, payment["tax_cents"], payment["linked"])
    items = linked.get("invoice_items") or [{
        "product_name": f"Payment {payment['receipt_number']}",
        "quantity": 1,
        "unit_price_cents": total - tax,
        "line_total_cents": total - tax,
        "tax_cents": tax,
    }]
    return Invoice(
        invoice_number=_invoice_number_for(payment["receipt_number"]),
        invoice_date=payment["created_at"],
        due_date=payment["created_at"],
        status=INVOICE_PAID,
        document_type=DOC_INVOICE,
        subtotal_cents=total - tax,
        tax_cents=tax,
        total_cents=total,
        paid_cents=total,
        remaining_cents=0,
        customer_name=linked.get("customer_name"),
        customer_email=linked.get("customer_email"),
        customer_tax_number=linked.get("customer_tax_number"),
        company_name=company["company_name"],
        company_tax_number=company["company_tax_number"],
        company_address=company.get("company_address") or "",
        company_phone=company.get("company_phone"),
        company_email=company.get("company_email"),
        tse_signature=payment["tse_signature"] or "",
        kassen_id=payment["kassen_id"] or "",
        cash_register_id=register_id,
        payment_method=payment["method"],
        payment_reference=payment["reference"],
        payment_date=payment["created_at"],
        invoice_items=items,
        tax_details=linked.get("tax_details") or {},
        source_payment_id=payment["id"],
        created_by_user_id=payment["created_by_user_id"],
    )


def backfill_from_payments() -> BackfillResult:
    """
    Create a PAID invoice for every active, receipted payment that has none.

    Cancelled payments and payments already booked on an active invoice are
    skipped. Returns inserted/skipped/failed counts.
    """
    result = BackfillResult()

    existing = {
        source_id
        for (source_id,) in db.session.query(Invoice.source_payment_id)
        .filter(Invoice.source_payment_id.isnot(None))
        .all()
    }
    by_id, by_number = _register_maps()
    company = default_company_profile()
    payments = _snapshot_payments()
    db.session.commit()

    for payment in payments:
        linked = payment["linked"]
        if (
            payment["id"] in existing
            or payment["status"] == PAYMENT_CANCELLED
            or (linked and linked["is_active"])
        ):
            result.skipped += 1
            continue

        register_id = _resolve_register(payment["kassen_id"], by_id, by_number)
        if payment["kassen_id"] and register_id is None:
            current_app.logger.warning(
                "Backfill: payment %s kassen_id %r does not match any cash register",
                payment["id"], payment["kassen_id"],
            )

        try:
            db.session.add(_build_invoice(payment, company, register_id))
            db.session.commit()
        except Exception:  # noqa: BLE001
            db.session.rollback()
            db.session.expunge_all()
            current_app.logger.exception("Backfill: invoice insert failed for payment %s", payment["id"])
            result.failed += 1
            continue

        existing.add(payment["id"])
        result.inserted += 1

    current_app.logger.info(
        "Backfill finished: inserted=%s skipped=%s failed=%s",
        result.inserted, result.skipped, result.failed,
    )
    return result

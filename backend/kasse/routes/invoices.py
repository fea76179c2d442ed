# Overview: Flask API routes for invoice operations; parses input and returns JSON responses.

# backend/kasse/routes/invoices.py
"""
Invoice Ledger API Routes

DESIGN:
- Amounts are accepted in euros ("totalAmount": 100.0) or cents ("total_cents": 10000)
- Only DRAFT invoices are editable; corrections go through credit notes
- DELETE is a soft delete

SECURITY:
- Credit notes and deletion need Administrator or Manager
- Backfill accepts both "Admin" and "Administrator" (two distinct roles)
"""

from flask import Blueprint, Response, jsonify, g, current_app, request

from ..services import invoice_service, tse_service, backfill_service
from ..decorators import require_auth, require_roles
from ..services.auth_service import ROLE_ADMIN, ROLE_ADMINISTRATOR, ROLE_MANAGER
from ..validation import (
    ServiceError, ValidationError, error_response, json_body, pick, to_cents, to_int,
)
from kasse.time_utils import parse_iso_datetime


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoice")


_TEXT_FIELDS = {
    "invoice_number": ("invoiceNumber", "invoice_number"),
    "customer_name": ("customerName", "customer_name"),
    "customer_email": ("customerEmail", "customer_email"),
    "customer_phone": ("customerPhone", "customer_phone"),
    "customer_address": ("customerAddress", "customer_address"),
    "customer_tax_number": ("customerTaxNumber", "customer_tax_number"),
    "company_name": ("companyName", "company_name"),
    "company_tax_number": ("companyTaxNumber", "company_tax_number"),
    "company_address": ("companyAddress", "company_address"),
    "company_phone": ("companyPhone", "company_phone"),
    "company_email": ("companyEmail", "company_email"),
    "kassen_id": ("kassenId", "kassen_id"),
    "payment_method": ("paymentMethod", "payment_method"),
    "payment_reference": ("paymentReference", "payment_reference"),
}

_AMOUNT_FIELDS = {
    "subtotal_cents": ("subtotal", "subtotalAmount"),
    "tax_cents": ("taxAmount", "tax_amount", "tax"),
    "total_cents": ("totalAmount", "total_amount", "total"),
}

_DATE_FIELDS = {
    "invoice_date": ("invoiceDate", "invoice_date"),
    "due_date": ("dueDate", "due_date"),
    "payment_date": ("paymentDate", "payment_date"),
}


def _present(data: dict, names) -> bool:
    return any(name in data for name in names)


def _parse_date(value, field):
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def _invoice_fields(data: dict) -> dict:
    """Translate a request body into invoice_service field names; only keys present are returned."""
    fields = {}
    for field, names in _TEXT_FIELDS.items():
        if _present(data, names):
            fields[field] = pick(data, *names)

    for field, names in _AMOUNT_FIELDS.items():
        if field in data:
            fields[field] = to_int(data[field], field)
        elif _present(data, names):
            fields[field] = to_cents(pick(data, *names), names[0])

    for field, names in _DATE_FIELDS.items():
        if _present(data, names):
            fields[field] = _parse_date(pick(data, *names), names[0])

    items = pick(data, "invoiceItems", "invoice_items", "items")
    if items is not None:
        if not isinstance(items, list):
            raise ValidationError("invoiceItems must be a list")
        fields["invoice_items"] = items

    tax_details = pick(data, "taxDetails", "tax_details")
    if tax_details is not None:
        if not isinstance(tax_details, dict):
            raise ValidationError("taxDetails must be an object")
        fields["tax_details"] = tax_details

    if _present(data, ("cashRegisterId", "cash_register_id")):
        fields["cash_register_id"] = to_int(pick(data, "cashRegisterId", "cash_register_id"), "cashRegisterId", required=False)

    return fields


# =============================================================================
# LIST / CREATE
# =============================================================================

@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """Query params: status, q (matches invoice number or customer name), limit."""
    try:
        limit = min(to_int(request.args.get("limit"), "limit", required=False) or 200, 1000)
        invoices = invoice_service.list_invoices(
            status=request.args.get("status") or None,
            query=request.args.get("q") or None,
            limit=limit,
        )
        return jsonify({
            "invoices": [inv.to_dict() for inv in invoices],
            "count": len(invoices),
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """
    Create a DRAFT invoice.

    Returns:
        201: Invoice created
        400: Missing company name, bad ATU number, totals do not add up
        409: Invoice number already in use
    """
    try:
        invoice = invoice_service.create_invoice(_invoice_fields(json_body()), user_id=g.current_user.id)
        return jsonify({"invoice": invoice.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# BACKFILL
# =============================================================================

@invoices_bp.post("/backfill-from-payments")
@require_auth
@require_roles(ROLE_ADMIN, ROLE_ADMINISTRATOR)
def backfill_route():
    """
    Create PAID invoices for payments that have none. Safe to re-run.

    Returns:
        200: {"inserted": n, "skipped": n, "failed": n}
    """
    try:
        result = backfill_service.backfill_from_payments()
        return jsonify(result.to_dict()), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Invoice backfill failed")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SINGLE INVOICE
# =============================================================================

@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>")
@require_auth
def update_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.update_invoice(invoice_id, _invoice_fields(json_body()))
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_roles(ROLE_ADMINISTRATOR, ROLE_MANAGER)
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id)
        return jsonify({"message": "Invoice deleted"}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/duplicate")
@require_auth
def duplicate_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.duplicate_invoice(invoice_id, user_id=g.current_user.id)
        return jsonify({"invoice": invoice.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to duplicate invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/credit-note")
@require_auth
@require_roles(ROLE_ADMINISTRATOR, ROLE_MANAGER)
def credit_note_route(invoice_id: int):
    """
    Request body: {"reasonCode": "RETURN", "reasonText": "Customer returned goods"}

    Returns:
        201: Credit note
        404: Original not found
        409: Original not PAID/SENT, or already has a credit note
    """
    try:
        data = json_body()
        credit = invoice_service.create_credit_note(
            invoice_id,
            pick(data, "reasonCode", "reason_code"),
            pick(data, "reasonText", "reason_text"),
            user_id=g.current_user.id,
        )
        return jsonify({"invoice": credit.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create credit note")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/sign")
@require_auth
def sign_invoice_route(invoice_id: int):
    """Sign with the connected TSE. 400 when no device is connected."""
    try:
        invoice = tse_service.sign_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sign invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/pdf")
@require_auth
def invoice_pdf_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        pdf = invoice_service.render_invoice_pdf(invoice_id)
        return Response(
            pdf,
            mimetype="application/pdf",
            headers={"Content-Disposition": f'inline; filename="{invoice.invoice_number}.pdf"'},
        )
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to render invoice PDF")
        return jsonify({"error": "Internal server error"}), 500

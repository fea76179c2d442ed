# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/kasse/routes/payments.py
"""
Payment Processing API Routes

DESIGN:
- Record payments against invoices (split and partial payments allowed)
- Cancel payments; the invoice balance is reversed, the row is kept

SECURITY:
- Any authenticated user may take payments
- Status changes (cancellation) need Administrator or Manager
"""

from flask import Blueprint, jsonify, g, current_app, request

from ..services import payment_service
from ..decorators import require_auth, require_roles
from ..services.auth_service import ROLE_ADMINISTRATOR, ROLE_MANAGER
from ..validation import (
    ServiceError, ValidationError, error_response, json_body, pick, to_cents, to_int,
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payment")


def _amount_cents(data: dict) -> int:
    cents = pick(data, "amount_cents", "amountCents")
    if cents is not None:
        return to_int(cents, "amount_cents")
    if data.get("amount") is None:
        raise ValidationError("amount is required")
    return to_cents(data.get("amount"), "amount", allow_negative=True)


@payments_bp.post("")
@require_auth
def create_payment_route():
    """
    Record a payment.

    Request body:
    {
        "invoiceId": 12,
        "amount": 60.00,            (or "amount_cents": 6000)
        "paymentMethod": "CASH",    CASH | CARD | VOUCHER
        "customerId": 4,            (optional)
        "reference": "...",         (optional)
        "notes": "...",             (optional)
        "transactionId": "...",     (optional)
        "cashRegisterId": 1         (optional)
    }

    Returns:
        201: Payment with the updated invoice
        400: Invalid amount or method
        404: Invoice not found
        409: Invoice is a credit note
    """
    try:
        data = json_body()
        invoice_id = to_int(pick(data, "invoiceId", "invoice_id"), "invoiceId")
        method = pick(data, "paymentMethod", "payment_method", "method")
        if not method:
            raise ValidationError("paymentMethod is required")

        payment = payment_service.create_payment(
            invoice_id=invoice_id,
            amount_cents=_amount_cents(data),
            method=str(method).upper(),
            user_id=g.current_user.id,
            customer_id=to_int(pick(data, "customerId", "customer_id"), "customerId", required=False),
            reference=data.get("reference"),
            notes=data.get("notes"),
            transaction_id=pick(data, "transactionId", "transaction_id"),
            cash_register_id=to_int(pick(data, "cashRegisterId", "cash_register_id"), "cashRegisterId", required=False),
        )

        return jsonify({
            "payment": payment.to_dict(),
            "invoice": payment.invoice.to_dict() if payment.invoice else None,
        }), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/invoice/<int:invoice_id>")
@require_auth
def list_invoice_payments_route(invoice_id: int):
    """Query params: include_cancelled (default true)."""
    try:
        include_cancelled = request.args.get("include_cancelled", "true").lower() != "false"
        payments = payment_service.list_invoice_payments(invoice_id, include_cancelled=include_cancelled)
        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "count": len(payments),
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoice payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.put("/<int:payment_id>/status")
@require_auth
@require_roles(ROLE_ADMINISTRATOR, ROLE_MANAGER)
def update_payment_status_route(payment_id: int):
    """
    Request body: {"status": "CANCELLED"}

    Returns:
        200: Updated payment (cancelling twice is a no-op)
        400: Unknown status
        404: Payment not found
        409: CANCELLED -> COMPLETED
    """
    try:
        data = json_body()
        status = data.get("status")
        if not status:
            raise ValidationError("status is required")

        payment = payment_service.update_status(payment_id, str(status).upper(), g.current_user.id)
        return jsonify({
            "payment": payment.to_dict(),
            "invoice": payment.invoice.to_dict() if payment.invoice else None,
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return jsonify({"error": "Internal server error"}), 500

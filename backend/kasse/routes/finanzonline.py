# Overview: Flask API routes for FinanzOnline operations; parses input and returns JSON responses.

# backend/kasse/routes/finanzonline.py
"""
FinanzOnline API Routes

Every submit attempt leaves a row in the submission history, including
attempts answered with 400.
"""

from flask import Blueprint, jsonify, g, current_app

from ..services import finanzonline_service
from ..decorators import require_auth, require_roles
from ..services.auth_service import ROLE_ADMINISTRATOR
from ..validation import ServiceError, ValidationError, error_response, json_body, pick, to_cents, to_int


finanzonline_bp = Blueprint("finanzonline", __name__, url_prefix="/api/finanzonline")


@finanzonline_bp.get("/config")
@require_auth
def get_config_route():
    try:
        return jsonify({"config": finanzonline_service.get_config()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load FinanzOnline config")
        return jsonify({"error": "Internal server error"}), 500


@finanzonline_bp.put("/config")
@require_auth
@require_roles(ROLE_ADMINISTRATOR)
def update_config_route():
    """
    Request body (any subset):
    {"apiUrl", "username", "autoSubmit", "submitInterval", "retryAttempts", "enableValidation"}
    """
    try:
        data = json_body()
        names = {
            "api_url": ("apiUrl", "api_url"),
            "username": ("username",),
            "auto_submit": ("autoSubmit", "auto_submit"),
            "submit_interval": ("submitInterval", "submit_interval"),
            "retry_attempts": ("retryAttempts", "retry_attempts"),
            "enable_validation": ("enableValidation", "enable_validation"),
        }
        fields = {}
        for field, aliases in names.items():
            if any(alias in data for alias in aliases):
                fields[field] = next(data[alias] for alias in aliases if alias in data)

        config = finanzonline_service.update_config(fields)
        return jsonify({"config": config, "message": "FinanzOnline config updated"}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update FinanzOnline config")
        return jsonify({"error": "Internal server error"}), 500


@finanzonline_bp.get("/status")
@require_auth
def status_route():
    try:
        return jsonify(finanzonline_service.get_status()), 200
    except Exception:
        current_app.logger.exception("Failed to get FinanzOnline status")
        return jsonify({"error": "Internal server error"}), 500


@finanzonline_bp.post("/submit-invoice")
@require_auth
def submit_invoice_route():
    """
    Request body:
    {"invoiceNumber": "INV-...", "totalAmount": 100.0, "invoiceId": 12}

    Returns:
        200: Submission accepted
        400: No connected FinanzOnline-enabled device, or the remote call
             failed (the attempt is recorded either way)
    """
    try:
        data = json_body()
        invoice_number = pick(data, "invoiceNumber", "invoice_number")
        if not invoice_number:
            raise ValidationError("invoiceNumber is required")
        if pick(data, "total_cents", "totalAmountCents") is not None:
            total_cents = to_int(pick(data, "total_cents", "totalAmountCents"), "total_cents")
        else:
            total_cents = to_cents(pick(data, "totalAmount", "total_amount", default=0), "totalAmount", allow_negative=True)

        submission = finanzonline_service.submit_invoice(
            invoice_number,
            total_cents,
            invoice_id=to_int(pick(data, "invoiceId", "invoice_id"), "invoiceId", required=False),
            user_id=g.current_user.id,
        )
        return jsonify({"submission": submission.to_dict(), "message": "Invoice submitted"}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit invoice to FinanzOnline")
        return jsonify({"error": "Internal server error"}), 500


@finanzonline_bp.post("/test-connection")
@require_auth
def test_connection_route():
    try:
        return jsonify(finanzonline_service.test_connection()), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("FinanzOnline connection test failed")
        return jsonify({"error": "Internal server error"}), 500


@finanzonline_bp.get("/history/<int:invoice_id>")
@require_auth
def history_route(invoice_id: int):
    try:
        submissions = finanzonline_service.submission_history(invoice_id)
        return jsonify({
            "submissions": [s.to_dict() for s in submissions],
            "count": len(submissions),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load FinanzOnline history")
        return jsonify({"error": "Internal server error"}), 500

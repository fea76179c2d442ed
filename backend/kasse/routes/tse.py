# Overview: Flask API routes for TSE device operations; parses input and returns JSON responses.

# backend/kasse/routes/tse.py
from flask import Blueprint, jsonify, current_app

from ..services import tse_service
from ..decorators import require_auth
from ..validation import BadRequestError, ServiceError, ValidationError, error_response, json_body, pick, to_cents, to_int
from kasse.time_utils import to_utc_z


tse_bp = Blueprint("tse", __name__, url_prefix="/api/tse")


@tse_bp.get("/status")
@require_auth
def status_route():
    try:
        return jsonify(tse_service.get_status()), 200
    except Exception:
        current_app.logger.exception("Failed to get TSE status")
        return jsonify({"error": "Internal server error"}), 500


@tse_bp.get("/devices")
@require_auth
def devices_route():
    try:
        devices = tse_service.list_devices()
        return jsonify({"devices": [d.to_dict() for d in devices]}), 200
    except Exception:
        current_app.logger.exception("Failed to list TSE devices")
        return jsonify({"error": "Internal server error"}), 500


@tse_bp.post("/connect")
@require_auth
def connect_route():
    """
    Request body: {"serialNumber": "TSE-001"}

    Returns:
        200: Device connected
        400: Handshake failed
        404: Unknown serial number
    """
    try:
        serial_number = pick(json_body(), "serialNumber", "serial_number")
        if not serial_number:
            raise ValidationError("serialNumber is required")
        device = tse_service.connect(serial_number)
        return jsonify({"device": device.to_dict(), "message": "TSE device connected"}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to connect TSE device")
        return jsonify({"error": "Internal server error"}), 500


@tse_bp.post("/signature")
@require_auth
def signature_route():
    """
    Request body:
    {"invoiceNumber": "INV-...", "totalAmount": 12.5, "taxDetails": {...}}

    Device state is checked before the body is validated: with no connected
    device this always answers 400.
    """
    try:
        if not tse_service.has_signing_device():
            raise BadRequestError("No TSE device is connected")

        data = json_body()
        invoice_number = pick(data, "invoiceNumber", "invoice_number")
        if not invoice_number:
            raise ValidationError("invoiceNumber is required")
        if pick(data, "total_cents", "totalAmountCents") is not None:
            total_cents = to_int(pick(data, "total_cents", "totalAmountCents"), "total_cents")
        else:
            total_cents = to_cents(pick(data, "totalAmount", "total_amount"), "totalAmount", allow_negative=True)

        result = tse_service.create_signature(invoice_number, total_cents, pick(data, "taxDetails", "tax_details"))
        return jsonify({
            "signature": result["signature"],
            "timestamp": to_utc_z(result["timestamp"]),
            "kassenId": result["kassen_id"],
            "serialNumber": result["serial_number"],
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create TSE signature")
        return jsonify({"error": "Internal server error"}), 500


@tse_bp.post("/disconnect")
@require_auth
def disconnect_route():
    try:
        devices = tse_service.disconnect()
        return jsonify({
            "devices": [d.to_dict() for d in devices],
            "message": "TSE device disconnected",
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to disconnect TSE device")
        return jsonify({"error": "Internal server error"}), 500

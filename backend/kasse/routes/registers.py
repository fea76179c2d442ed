# Overview: Flask API routes for cash register operations; parses input and returns JSON responses.

# backend/kasse/routes/registers.py
"""
Cash Register API Routes

SECURITY:
- Creating registers requires Administrator
- Any authenticated user may open a closed register; only the user who
  opened it may close it (403 otherwise)
- Period closings and their history require Administrator or Manager
"""

from flask import Blueprint, jsonify, g, current_app, request

from ..services import register_service
from ..decorators import require_auth, require_roles
from ..services.auth_service import ROLE_ADMINISTRATOR, ROLE_MANAGER
from ..validation import ServiceError, ValidationError, error_response, json_body, pick, to_cents, to_int
from kasse.time_utils import parse_iso_datetime, to_utc_z


registers_bp = Blueprint("registers", __name__, url_prefix="/api/cash-register")


def _balance_cents(data: dict, euro_names: tuple, cents_name: str) -> int:
    if data.get(cents_name) is not None:
        return to_int(data[cents_name], cents_name)
    return to_cents(pick(data, *euro_names, default=0), euro_names[0])


@registers_bp.get("")
@require_auth
def list_registers_route():
    try:
        registers = register_service.list_registers()
        return jsonify({"registers": [r.to_dict() for r in registers]}), 200
    except Exception:
        current_app.logger.exception("Failed to list cash registers")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("")
@require_auth
@require_roles(ROLE_ADMINISTRATOR)
def create_register_route():
    """
    Request body: {"location": "Bar", "startingBalance": 150.00}

    The register gets the next sequential number (K001, K002, ...).
    """
    try:
        data = json_body()
        register = register_service.create_register(
            data.get("location"),
            _balance_cents(data, ("startingBalance", "starting_balance"), "starting_balance_cents"),
            g.current_user.id,
        )
        return jsonify({"register": register.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:register_id>")
@require_auth
def get_register_route(register_id: int):
    try:
        register = register_service.get_register(register_id)
        return jsonify({"register": register.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:register_id>/transactions")
@require_auth
def list_transactions_route(register_id: int):
    """Query params: start, end (ISO-8601)."""
    try:
        try:
            start = parse_iso_datetime(request.args.get("start"))
            end = parse_iso_datetime(request.args.get("end"))
        except ValueError:
            raise ValidationError("start/end must be ISO-8601 datetimes")

        transactions = register_service.list_transactions(register_id, start, end)
        return jsonify({
            "transactions": [t.to_dict() for t in transactions],
            "count": len(transactions),
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list register transactions")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/<int:register_id>/open")
@require_auth
def open_register_route(register_id: int):
    """
    Request body: {"openingBalance": 150.00}

    Returns:
        200: Register opened, caller is the operator
        400: Already open
        404: Register not found
    """
    try:
        data = json_body()
        register = register_service.open_register(
            register_id,
            g.current_user.id,
            _balance_cents(data, ("openingBalance", "opening_balance"), "opening_balance_cents"),
        )
        return jsonify({"register": register.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/<int:register_id>/close")
@require_auth
def close_register_route(register_id: int):
    """
    Request body: {"closingBalance": 820.50}

    Returns:
        200: Register closed
        400: Already closed
        403: Caller is not the current operator
        404: Register not found
    """
    try:
        data = json_body()
        register = register_service.close_register(
            register_id,
            g.current_user.id,
            _balance_cents(data, ("closingBalance", "closing_balance"), "closing_balance_cents"),
        )
        return jsonify({"register": register.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close cash register")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PERIOD CLOSINGS
# =============================================================================

@registers_bp.post("/<int:register_id>/closing/<kind>")
@require_auth
@require_roles(ROLE_ADMINISTRATOR, ROLE_MANAGER)
def perform_closing_route(register_id: int, kind: str):
    """
    Close the current day, month or year (kind: daily | monthly | yearly).

    Returns:
        201: Closing stored with its TSE signature
        400: Unknown kind, no TSE connected, or nothing paid in the period
        404: Register not found
        409: Period already closed
    """
    try:
        closing = register_service.perform_closing(register_id, g.current_user.id, kind.upper())
        return jsonify({"closing": closing.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to perform register closing")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/closings")
@require_auth
@require_roles(ROLE_ADMINISTRATOR, ROLE_MANAGER)
def list_closings_route():
    """Query params: registerId, from, to (ISO-8601, matched against the period start)."""
    try:
        try:
            start = parse_iso_datetime(request.args.get("from"))
            end = parse_iso_datetime(request.args.get("to"))
        except ValueError:
            raise ValidationError("from/to must be ISO-8601 datetimes")
        register_id = to_int(pick(request.args, "registerId", "register_id"), "registerId", required=False)

        closings = register_service.list_closings(register_id, start, end)
        return jsonify({
            "closings": [c.to_dict() for c in closings],
            "count": len(closings),
            "summary": register_service.summarize_closings(closings),
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list register closings")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:register_id>/can-close")
@require_auth
def can_close_route(register_id: int):
    try:
        can_close = register_service.can_perform_closing(register_id)
        last = register_service.last_closing_date(register_id)
        return jsonify({
            "can_close": can_close,
            "last_closing_date": to_utc_z(last),
            "message": "Daily closing can be performed" if can_close else "Daily closing already performed for today",
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check register closing")
        return jsonify({"error": "Internal server error"}), 500

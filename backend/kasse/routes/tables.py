# Overview: Flask API routes for restaurant tables; parses input and returns JSON responses.

# backend/kasse/routes/tables.py
from flask import Blueprint, jsonify, current_app

from ..services import table_service
from ..decorators import require_auth, require_roles
from ..services.auth_service import ROLE_ADMINISTRATOR, ROLE_MANAGER
from ..validation import ServiceError, ValidationError, error_response, json_body, pick, to_int


tables_bp = Blueprint("tables", __name__, url_prefix="/api/tables")


@tables_bp.get("")
@require_auth
def list_tables_route():
    try:
        tables = table_service.list_tables()
        return jsonify({"tables": [t.to_dict() for t in tables]}), 200
    except Exception:
        current_app.logger.exception("Failed to list tables")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.post("")
@require_auth
@require_roles(ROLE_ADMINISTRATOR, ROLE_MANAGER)
def create_table_route():
    """Request body: {"tableNumber": 7, "name": "Terrasse 1", "capacity": 6}"""
    try:
        data = json_body()
        table = table_service.create_table(
            to_int(pick(data, "tableNumber", "table_number"), "tableNumber"),
            name=data.get("name"),
            capacity=to_int(data.get("capacity", 4), "capacity"),
        )
        return jsonify({"table": table.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create table")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.put("/<int:table_id>/status")
@require_auth
def set_table_status_route(table_id: int):
    """Request body: {"status": "RESERVED"}"""
    try:
        status = json_body().get("status")
        if not status:
            raise ValidationError("status is required")
        table = table_service.set_table_status(table_id, str(status).upper())
        return jsonify({"table": table.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set table status")
        return jsonify({"error": "Internal server error"}), 500

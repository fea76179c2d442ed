# Overview: Flask API routes for cart operations; parses input and returns JSON responses.

# backend/kasse/routes/carts.py
"""
Cart API Routes

Carts are private to the user that created them: every route passes the
caller's id down, and another user's cart answers 404.
"""

from flask import Blueprint, jsonify, g, current_app, request

from ..services import cart_service
from ..decorators import require_auth
from ..validation import ServiceError, error_response, json_body, pick, to_int


carts_bp = Blueprint("carts", __name__, url_prefix="/api/cart")


def _cart_payload(cart):
    return cart.to_dict(totals=cart_service.cart_totals(cart))


@carts_bp.get("/current")
@require_auth
def current_cart_route():
    """Return (or open) the caller's ACTIVE cart for ?tableNumber=."""
    try:
        table_number = to_int(pick(request.args, "tableNumber", "table_number"), "tableNumber")
        cart = cart_service.get_current_cart(
            g.current_user.id,
            table_number,
            waiter_name=g.current_user.display_name or g.current_user.username,
        )
        return jsonify({"cart": _cart_payload(cart)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load current cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("")
@require_auth
def create_cart_route():
    """
    Request body (all optional):
    {"tableNumber": 5, "waiterName": "Anna", "customerId": 12, "notes": "..."}
    """
    try:
        data = json_body()
        cart = cart_service.create_cart(
            g.current_user.id,
            table_number=to_int(pick(data, "tableNumber", "table_number"), "tableNumber", required=False),
            waiter_name=pick(data, "waiterName", "waiter_name"),
            customer_id=to_int(pick(data, "customerId", "customer_id"), "customerId", required=False),
            notes=data.get("notes"),
        )
        return jsonify({"cartId": cart.cart_id, "cart": _cart_payload(cart)}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.get("/<cart_id>")
@require_auth
def get_cart_route(cart_id: str):
    try:
        cart = cart_service.get_cart(cart_id, g.current_user.id)
        return jsonify({"cart": _cart_payload(cart)}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("/<cart_id>/items")
@require_auth
def add_item_route(cart_id: str):
    """
    Request body:
    {"productId": 3, "quantity": 2, "notes": "no onions"}

    Returns:
        201: Item added (or merged into an existing line)
        400: Quantity outside 1..999
        404: Cart missing, not active, expired, or product missing
    """
    try:
        data = json_body()
        product_id = to_int(pick(data, "productId", "product_id"), "productId")
        quantity = to_int(data.get("quantity", 1), "quantity")

        item = cart_service.add_item(
            cart_id, product_id, quantity, data.get("notes"),
            user_id=g.current_user.id,
        )
        cart = cart_service.get_cart(cart_id, g.current_user.id)
        return jsonify({"item": item.to_dict(), "cart": _cart_payload(cart)}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.put("/<cart_id>/items/<int:item_id>")
@require_auth
def update_item_route(cart_id: str, item_id: int):
    try:
        data = json_body()
        quantity = to_int(data.get("quantity"), "quantity")
        item = cart_service.update_item(
            cart_id, item_id, quantity, data.get("notes"),
            user_id=g.current_user.id,
        )
        return jsonify({"item": item.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.delete("/<cart_id>/items/<int:item_id>")
@require_auth
def remove_item_route(cart_id: str, item_id: int):
    try:
        cart_service.remove_item(cart_id, item_id, user_id=g.current_user.id)
        return jsonify({"message": "Item removed"}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.delete("/<cart_id>")
@require_auth
def clear_cart_route(cart_id: str):
    try:
        cart_service.clear_cart(cart_id, user_id=g.current_user.id)
        return jsonify({"message": "Cart cleared"}), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("/<cart_id>/checkout")
@require_auth
def checkout_route(cart_id: str):
    """
    Turn the cart into a DRAFT invoice.

    Request body (optional):
    {"customerName": "...", "customerEmail": "...", "cashRegisterId": 1}
    """
    try:
        data = json_body()
        customer = {
            key: value for key, value in {
                "customer_name": pick(data, "customerName", "customer_name"),
                "customer_email": pick(data, "customerEmail", "customer_email"),
                "customer_phone": pick(data, "customerPhone", "customer_phone"),
                "customer_address": pick(data, "customerAddress", "customer_address"),
                "customer_tax_number": pick(data, "customerTaxNumber", "customer_tax_number"),
            }.items() if value is not None
        }
        invoice = cart_service.checkout(
            cart_id,
            g.current_user.id,
            customer=customer,
            cash_register_id=to_int(pick(data, "cashRegisterId", "cash_register_id"), "cashRegisterId", required=False),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check out cart")
        return jsonify({"error": "Internal server error"}), 500

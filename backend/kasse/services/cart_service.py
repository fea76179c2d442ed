# Overview: Service-layer operations for carts; encapsulates business logic and database work.

"""
Cart Manager

WHY: A waiter builds an order per table before anything is paid. The cart
holds that mutable state until checkout turns it into an invoice.

DESIGN PRINCIPLES:
- Carts belong to the user that created them; other users get NotFound
- Only ACTIVE, unexpired carts are mutable. Expiry is enforced on touch
  (the cart flips to EXPIRED) and in bulk by `expire_carts`
- Prices and tax classes are snapshotted on the line when added
- Every mutation locks the cart row, so concurrent adds for different
  products both land
"""

import uuid
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Cart, CartItem, Product, active
from ..models.carts import CART_ACTIVE, CART_COMPLETED, CART_EXPIRED
from ..models.catalog import tax_rate_bps
from ..validation import NotFoundError, ValidationError
from kasse.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from . import table_service


DEFAULT_CART_TTL_HOURS = 24
DEFAULT_MAX_QUANTITY = 999


def _ttl() -> timedelta:
    return timedelta(hours=current_app.config.get("CART_TTL_HOURS", DEFAULT_CART_TTL_HOURS))


def _max_quantity() -> int:
    return current_app.config.get("MAX_CART_ITEM_QUANTITY", DEFAULT_MAX_QUANTITY)


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    limit = _max_quantity()
    if quantity < 1 or quantity > limit:
        raise ValidationError(f"quantity must be between 1 and {limit}")
    return quantity


def line_tax_cents(line_total_cents: int, tax_type: str) -> int:
    """VAT on a net line amount, rounded half-up to the cent."""
    return (line_total_cents * tax_rate_bps(tax_type) + 5000) // 10000


# =============================================================================
# CART CREATION / LOOKUP
# =============================================================================

def create_cart(
    user_id: int,
    table_number: int | None = None,
    waiter_name: str | None = None,
    customer_id: int | None = None,
    notes: str | None = None,
) -> Cart:
    """Create a new ACTIVE cart that expires after the configured TTL (24h)."""
    now = utcnow()
    cart = Cart(
        cart_id=str(uuid.uuid4()),
        table_number=table_number,
        waiter_name=waiter_name,
        customer_id=customer_id,
        user_id=user_id,
        notes=notes,
        status=CART_ACTIVE,
        expires_at=now + _ttl(),
        created_at=now,
    )
    db.session.add(cart)
    db.session.flush()

    if table_number is not None:
        table_service.sync_table_status(table_number)

    db.session.commit()
    current_app.logger.info("Cart created: %s user=%s table=%s", cart.cart_id, user_id, table_number)
    return cart


def get_current_cart(user_id: int, table_number: int, waiter_name: str | None = None) -> Cart:
    """
    Return the user's ACTIVE cart for a table, creating one if none exists.

    Expired carts found on the way are flipped to EXPIRED and ignored.
    """
    now = utcnow()
    cart = db.session.query(Cart).filter_by(
        table_number=table_number,
        user_id=user_id,
        status=CART_ACTIVE,
    ).order_by(Cart.created_at.desc()).first()

    if cart and cart.expires_at <= now:
        cart.status = CART_EXPIRED
        db.session.commit()
        cart = None

    if cart:
        return cart

    return create_cart(user_id, table_number=table_number, waiter_name=waiter_name)


def _load_active_cart(cart_id: str, user_id: int | None, *, for_update: bool = False) -> Cart:
    query = db.session.query(Cart).filter_by(cart_id=cart_id)
    if for_update:
        query = lock_for_update(query)
    cart = query.first()

    if not cart or (user_id is not None and cart.user_id != user_id):
        raise NotFoundError("Cart not found")

    if cart.status != CART_ACTIVE:
        raise NotFoundError(f"Cart is {cart.status.lower()}", status=cart.status)

    if cart.expires_at <= utcnow():
        cart.status = CART_EXPIRED
        db.session.commit()
        raise NotFoundError("Cart has expired", status=CART_EXPIRED)

    return cart


def get_cart(cart_id: str, user_id: int | None = None) -> Cart:
    """Get an ACTIVE cart owned by user_id. Raises NotFoundError otherwise."""
    return _load_active_cart(cart_id, user_id)


def cart_totals(cart: Cart) -> dict:
    """Net subtotal, VAT and gross total over the cart lines (cents)."""
    subtotal = 0
    tax = 0
    total_items = 0
    for item in cart.items:
        subtotal += item.line_total_cents
        tax += line_tax_cents(item.line_total_cents, item.tax_type)
        total_items += item.quantity
    return {
        "total_items": total_items,
        "subtotal_cents": subtotal,
        "tax_cents": tax,
        "total_cents": subtotal + tax,
    }


# =============================================================================
# ITEM MUTATION
# =============================================================================

def add_item(
    cart_id: str,
    product_id: int,
    quantity: int,
    notes: str | None = None,
    *,
    user_id: int | None = None,
) -> CartItem:
    """
    Add a product to a cart, merging into an existing line with the same
    product and notes.

    Raises:
        NotFoundError: cart missing/inactive/expired, or product missing
        ValidationError: quantity outside 1..MAX_CART_ITEM_QUANTITY (also after merge)
    """
    _validate_quantity(quantity)

    def _op():
        cart = _load_active_cart(cart_id, user_id, for_update=True)

        product = active(Product).filter(Product.id == product_id).first()
        if not product:
            raise NotFoundError(f"Product {product_id} not found")

        existing = db.session.query(CartItem).filter_by(
            cart_pk=cart.id,
            product_id=product_id,
            notes=notes,
        ).first()

        if existing:
            merged = existing.quantity + quantity
            _validate_quantity(merged)
            existing.quantity = merged
            item = existing
        else:
            item = CartItem(
                cart_pk=cart.id,
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price_cents=product.price_cents,
                tax_type=product.tax_type,
                notes=notes,
            )
            db.session.add(item)

        db.session.commit()
        return item

    return run_with_retry(_op)


def _load_item(cart: Cart, item_id: int) -> CartItem:
    item = db.session.query(CartItem).filter_by(id=item_id, cart_pk=cart.id).first()
    if not item:
        raise NotFoundError(f"Cart item {item_id} not found")
    return item


def update_item(
    cart_id: str,
    item_id: int,
    quantity: int,
    notes: str | None = None,
    *,
    user_id: int | None = None,
) -> CartItem:
    """Set a line's quantity (and notes when given)."""
    _validate_quantity(quantity)

    def _op():
        cart = _load_active_cart(cart_id, user_id, for_update=True)
        item = _load_item(cart, item_id)
        item.quantity = quantity
        if notes is not None:
            item.notes = notes
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_item(cart_id: str, item_id: int, *, user_id: int | None = None) -> None:
    def _op():
        cart = _load_active_cart(cart_id, user_id, for_update=True)
        item = _load_item(cart, item_id)
        db.session.delete(item)
        db.session.commit()

    run_with_retry(_op)


def clear_cart(cart_id: str, *, user_id: int | None = None) -> None:
    """Delete every item and the cart itself."""
    cart = _load_active_cart(cart_id, user_id, for_update=True)
    table_number = cart.table_number

    db.session.delete(cart)  # items cascade
    db.session.flush()

    if table_number is not None:
        table_service.sync_table_status(table_number)

    db.session.commit()
    current_app.logger.info("Cart cleared: %s", cart_id)


# =============================================================================
# CHECKOUT / EXPIRY
# =============================================================================

def checkout(
    cart_id: str,
    user_id: int,
    *,
    company: dict | None = None,
    customer: dict | None = None,
    cash_register_id: int | None = None,
):
    """
    Turn an ACTIVE cart into a DRAFT invoice and mark the cart COMPLETED.

    Both writes happen in one transaction. Empty carts cannot be checked out.
    """
    from . import invoice_service

    cart = _load_active_cart(cart_id, user_id, for_update=True)
    if not cart.items:
        raise ValidationError("Cannot check out an empty cart")

    totals = cart_totals(cart)
    items = []
    tax_details: dict[str, dict] = {}
    for item in cart.items:
        line_tax = line_tax_cents(item.line_total_cents, item.tax_type)
        items.append({
            "product_id": item.product_id,
            "product_name": item.product_name,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "line_total_cents": item.line_total_cents,
            "tax_type": item.tax_type,
            "tax_cents": line_tax,
            "notes": item.notes,
        })
        bucket = tax_details.setdefault(item.tax_type, {
            "rate_bps": tax_rate_bps(item.tax_type),
            "net_cents": 0,
            "tax_cents": 0,
        })
        bucket["net_cents"] += item.line_total_cents
        bucket["tax_cents"] += line_tax

    fields = dict(company or invoice_service.default_company_profile())
    fields.update(customer or {})
    fields.update({
        "subtotal_cents": totals["subtotal_cents"],
        "tax_cents": totals["tax_cents"],
        "total_cents": totals["total_cents"],
        "invoice_items": items,
        "tax_details": tax_details,
        "cash_register_id": cash_register_id,
        "cart_id": cart.cart_id,
    })

    invoice = invoice_service.build_invoice(fields, user_id=user_id)

    cart.status = CART_COMPLETED
    cart.completed_at = utcnow()
    db.session.flush()

    if cart.table_number is not None:
        table_service.sync_table_status(cart.table_number)

    db.session.commit()
    current_app.logger.info("Cart %s checked out into invoice %s", cart.cart_id, invoice.invoice_number)
    return invoice


def expire_carts(now: datetime | None = None) -> int:
    """Flip every ACTIVE cart past its expiry to EXPIRED. Returns the count."""
    now = now or utcnow()
    carts = db.session.query(Cart).filter(
        Cart.status == CART_ACTIVE,
        Cart.expires_at <= now,
    ).all()

    tables = set()
    for cart in carts:
        cart.status = CART_EXPIRED
        if cart.table_number is not None:
            tables.add(cart.table_number)
    db.session.flush()

    for table_number in tables:
        table_service.sync_table_status(table_number)

    db.session.commit()
    if carts:
        current_app.logger.info("Expired %s carts", len(carts))
    return len(carts)

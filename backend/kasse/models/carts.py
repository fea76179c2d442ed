from __future__ import annotations

from ..extensions import db
from kasse.time_utils import to_utc_z


CART_ACTIVE = "ACTIVE"
CART_COMPLETED = "COMPLETED"
CART_CANCELLED = "CANCELLED"
CART_EXPIRED = "EXPIRED"

CART_STATUSES = [CART_ACTIVE, CART_COMPLETED, CART_CANCELLED, CART_EXPIRED]


class Cart(db.Model):
    """
    Open order for a table, owned by the user that created it.

    LIFECYCLE:
    - ACTIVE: items can be added, changed, removed
    - COMPLETED: checked out into an invoice
    - CANCELLED / EXPIRED: terminal; the cart is immutable

    A cart is only mutable while ACTIVE and before `expires_at`.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.Index("ix_carts_table_status_user", "table_number", "status", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.String(36), nullable=False, unique=True, index=True)

    table_number = db.Column(db.Integer, nullable=True)
    waiter_name = db.Column(db.String(100), nullable=True)
    customer_id = db.Column(db.Integer, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=CART_ACTIVE, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, totals: dict | None = None) -> dict:
        data = {
            "cart_id": self.cart_id,
            "table_number": self.table_number,
            "waiter_name": self.waiter_name,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "notes": self.notes,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "items": [item.to_dict() for item in self.items],
        }
        if totals is not None:
            data.update(totals)
        return data


class CartItem(db.Model):
    """Single line on a cart. Quantity is always >= 1; removal deletes the row."""
    __tablename__ = "cart_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cart_pk = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    product_name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    tax_type = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cart = db.relationship("Cart", back_populates="items")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "tax_type": self.tax_type,
            "notes": self.notes,
        }

from __future__ import annotations

from ..extensions import db
from kasse.time_utils import to_utc_z
from .base import SoftDeleteMixin


# Austrian VAT classes, in basis points
TAX_STANDARD = "STANDARD"
TAX_REDUCED = "REDUCED"
TAX_SPECIAL = "SPECIAL"
TAX_ZERO = "ZERO"

TAX_RATES_BPS = {
    TAX_STANDARD: 2000,
    TAX_REDUCED: 1000,
    TAX_SPECIAL: 1300,
    TAX_ZERO: 0,
}


def tax_rate_bps(tax_type: str | None) -> int:
    """Unknown tax classes fall back to the standard 20% rate."""
    return TAX_RATES_BPS.get((tax_type or TAX_STANDARD).upper(), TAX_RATES_BPS[TAX_STANDARD])


class Product(SoftDeleteMixin, db.Model):
    """
    Sellable item. Prices are net (before VAT), in cents.

    Cart lines snapshot `price_cents` and `tax_type` when added, so later
    price edits never change an open order.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)
    tax_type = db.Column(db.String(16), nullable=False, default=TAX_STANDARD)
    image_url = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "tax_type": self.tax_type,
            "tax_rate_bps": tax_rate_bps(self.tax_type),
            "image_url": self.image_url,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

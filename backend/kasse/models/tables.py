from __future__ import annotations

from ..extensions import db
from kasse.time_utils import to_utc_z
from .base import SoftDeleteMixin


TABLE_FREE = "FREE"
TABLE_OCCUPIED = "OCCUPIED"
TABLE_RESERVED = "RESERVED"

TABLE_STATUSES = [TABLE_FREE, TABLE_OCCUPIED, TABLE_RESERVED]


class RestaurantTable(SoftDeleteMixin, db.Model):
    """Restaurant table. Carts reference it by table_number."""
    __tablename__ = "restaurant_tables"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    table_number = db.Column(db.Integer, nullable=False, unique=True)
    name = db.Column(db.String(64), nullable=True)
    capacity = db.Column(db.Integer, nullable=False, default=4)
    status = db.Column(db.String(16), nullable=False, default=TABLE_FREE)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table_number": self.table_number,
            "name": self.name or f"Tisch {self.table_number}",
            "capacity": self.capacity,
            "status": self.status,
            "updated_at": to_utc_z(self.updated_at),
        }

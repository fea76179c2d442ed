# Overview: Service-layer operations for restaurant tables.

from ..extensions import db
from ..models import Cart, RestaurantTable
from ..models.carts import CART_ACTIVE
from ..models.tables import TABLE_FREE, TABLE_OCCUPIED, TABLE_RESERVED, TABLE_STATUSES
from ..validation import ConflictError, ValidationError
from .repository import Repository
from .concurrency import lock_for_update, run_with_retry


_tables = Repository(RestaurantTable, "Table")


def list_tables() -> list[RestaurantTable]:
    return _tables.query().order_by(RestaurantTable.table_number.asc()).all()


def create_table(table_number: int, name: str | None = None, capacity: int = 4) -> RestaurantTable:
    if table_number < 1:
        raise ValidationError("table_number must be positive")
    if capacity < 1:
        raise ValidationError("capacity must be positive")

    existing = db.session.query(RestaurantTable).filter_by(table_number=table_number).first()
    if existing:
        raise ConflictError(f"Table {table_number} already exists")

    table = _tables.add(RestaurantTable(
        table_number=table_number,
        name=name,
        capacity=capacity,
        status=TABLE_FREE,
    ))
    db.session.commit()
    return table


def set_table_status(table_id: int, status: str) -> RestaurantTable:
    if status not in TABLE_STATUSES:
        raise ValidationError(f"Invalid table status: {status}. Must be one of {TABLE_STATUSES}")

    def _op():
        table = _tables.require(table_id, for_update=True)
        table.status = status
        db.session.commit()
        return table

    return run_with_retry(_op)


def sync_table_status(table_number: int) -> None:
    """
    Derive OCCUPIED/FREE from open carts for a table. Does not commit.

    Unknown table numbers are ignored; a RESERVED table stays reserved
    until a cart is opened on it.
    """
    table = lock_for_update(
        db.session.query(RestaurantTable).filter_by(table_number=table_number, is_active=True)
    ).first()
    if not table:
        return

    has_open_cart = db.session.query(Cart.id).filter_by(
        table_number=table_number,
        status=CART_ACTIVE,
    ).first() is not None

    if has_open_cart:
        table.status = TABLE_OCCUPIED
    elif table.status != TABLE_RESERVED:
        table.status = TABLE_FREE

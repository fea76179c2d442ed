from __future__ import annotations

from ..extensions import db
from kasse.time_utils import to_utc_z
from .base import SoftDeleteMixin


REGISTER_OPEN = "OPEN"
REGISTER_CLOSED = "CLOSED"

TXN_OPEN = "OPEN"
TXN_CLOSE = "CLOSE"
TXN_SALE = "SALE"
TXN_CANCEL = "CANCEL"

CLOSING_DAILY = "DAILY"
CLOSING_MONTHLY = "MONTHLY"
CLOSING_YEARLY = "YEARLY"
CLOSING_TYPES = (CLOSING_DAILY, CLOSING_MONTHLY, CLOSING_YEARLY)


class CashRegister(SoftDeleteMixin, db.Model):
    """
    Physical cash register (Kasse).

    LIFECYCLE:
    - CLOSED -> OPEN: assigns the operating user, records an OPEN transaction
    - OPEN -> CLOSED: only the operating user may close; records a CLOSE
      transaction and clears the operator

    register_number is sequential and human-readable (K001, K002, ...).
    """
    __tablename__ = "cash_registers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    register_number = db.Column(db.String(16), nullable=False, unique=True)
    location = db.Column(db.String(128), nullable=True)

    starting_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    last_balance_update = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=REGISTER_CLOSED, index=True)
    current_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    current_user = db.relationship("User", foreign_keys=[current_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_number": self.register_number,
            "location": self.location,
            "starting_balance_cents": self.starting_balance_cents,
            "current_balance_cents": self.current_balance_cents,
            "last_balance_update": to_utc_z(self.last_balance_update) if self.last_balance_update else None,
            "status": self.status,
            "current_user_id": self.current_user_id,
            "current_user": self.current_user.username if self.current_user else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class CashRegisterTransaction(db.Model):
    """Append-only movement log for a register (open, close, cash sale, cancellation)."""
    __tablename__ = "cash_register_transactions"
    __table_args__ = (
        db.Index("ix_cash_register_txn_register_date", "cash_register_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_details.id"), nullable=True)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False)

    cash_register = db.relationship("CashRegister", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_id": self.cash_register_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "user_id": self.user_id,
            "payment_id": self.payment_id,
            "transaction_date": to_utc_z(self.transaction_date),
        }


class RegisterClosing(db.Model):
    """
    Signed period closing (Tagesabschluss) for one register.

    Totals are taken over the PAID invoices booked on the register within
    [period_start, period_end). At most one closing per register, type and
    period start.
    """
    __tablename__ = "register_closings"
    __table_args__ = (
        db.UniqueConstraint("cash_register_id", "closing_type", "period_start",
                            name="uq_register_closings_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closing_type = db.Column(db.String(16), nullable=False)
    period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    period_end = db.Column(db.DateTime(timezone=True), nullable=False)

    total_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    transaction_count = db.Column(db.Integer, nullable=False)

    tse_signature = db.Column(db.String(512), nullable=False)
    kassen_id = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    cash_register = db.relationship("CashRegister")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_id": self.cash_register_id,
            "register_number": self.cash_register.register_number if self.cash_register else None,
            "user_id": self.user_id,
            "closing_type": self.closing_type,
            "period_start": to_utc_z(self.period_start),
            "period_end": to_utc_z(self.period_end),
            "total_cents": self.total_cents,
            "tax_cents": self.tax_cents,
            "transaction_count": self.transaction_count,
            "tse_signature": self.tse_signature,
            "kassen_id": self.kassen_id,
            "created_at": to_utc_z(self.created_at),
        }

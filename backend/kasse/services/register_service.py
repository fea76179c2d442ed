# Overview: Service-layer operations for cash registers; encapsulates business logic and database work.

"""
Cash Register Service

WHY: Every cash payment moves money in a physical drawer. Registers track
who operates them and the running balance, with an append-only movement log.

DESIGN PRINCIPLES:
- Register numbers are sequential and human readable (K001, K002, ...)
- Only the operator who opened a register may close it
- Balance changes always write a CashRegisterTransaction in the same commit
- Period closings are signed on the TSE and unique per register, type and
  period; the device is called with no transaction open
"""

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegister, CashRegisterTransaction, Invoice, RegisterClosing
from ..models.invoices import INVOICE_PAID, DOC_INVOICE
from ..models.registers import (
    REGISTER_OPEN, REGISTER_CLOSED,
    TXN_OPEN, TXN_CLOSE, TXN_SALE, TXN_CANCEL,
    CLOSING_DAILY, CLOSING_MONTHLY, CLOSING_YEARLY, CLOSING_TYPES,
)
from ..validation import BadRequestError, ConflictError, ForbiddenError, ValidationError
from kasse.time_utils import day_stamp, to_utc_z, utcnow
from .concurrency import run_with_retry
from .repository import Repository
from . import tse_service


_registers = Repository(CashRegister, "Cash register")


def _next_register_number() -> str:
    numbers = [n for (n,) in db.session.query(CashRegister.register_number).all()]
    highest = 0
    for number in numbers:
        if number and number.startswith("K") and number[1:].isdigit():
            highest = max(highest, int(number[1:]))
    return f"K{highest + 1:03d}"


def _record(register: CashRegister, txn_type: str, amount_cents: int, description: str,
            user_id: int | None, payment_id: int | None = None) -> CashRegisterTransaction:
    now = utcnow()
    txn = CashRegisterTransaction(
        cash_register_id=register.id,
        transaction_type=txn_type,
        amount_cents=amount_cents,
        description=description,
        user_id=user_id,
        payment_id=payment_id,
        transaction_date=now,
    )
    db.session.add(txn)
    return txn


# =============================================================================
# LIFECYCLE
# =============================================================================

def create_register(location: str | None, starting_balance_cents: int, user_id: int) -> CashRegister:
    """Create a CLOSED register with the next K-number and an OPEN movement for the float."""
    if starting_balance_cents < 0:
        raise ValidationError("starting_balance must not be negative")

    now = utcnow()
    register = _registers.add(CashRegister(
        register_number=_next_register_number(),
        location=location,
        starting_balance_cents=starting_balance_cents,
        current_balance_cents=starting_balance_cents,
        last_balance_update=now,
        status=REGISTER_CLOSED,
    ))
    _record(register, TXN_OPEN, starting_balance_cents, "Starting balance", user_id)
    db.session.commit()

    current_app.logger.info("Cash register %s created at %s", register.register_number, location)
    return register


def open_register(register_id: int, user_id: int, opening_balance_cents: int) -> CashRegister:
    """
    Open a register for an operator.

    Raises:
        NotFoundError: unknown or deactivated register
        BadRequestError: register already open
    """
    if opening_balance_cents < 0:
        raise ValidationError("opening_balance must not be negative")

    def _op():
        register = _registers.require(register_id, for_update=True)
        if register.status == REGISTER_OPEN:
            raise BadRequestError(f"Cash register {register.register_number} is already open")

        register.status = REGISTER_OPEN
        register.current_user_id = user_id
        register.current_balance_cents = opening_balance_cents
        register.last_balance_update = utcnow()
        _record(register, TXN_OPEN, opening_balance_cents, "Register opened", user_id)
        db.session.commit()
        return register

    register = run_with_retry(_op)
    current_app.logger.info("Cash register %s opened by user %s", register.register_number, user_id)
    return register


def close_register(register_id: int, user_id: int, closing_balance_cents: int) -> CashRegister:
    """
    Close a register. Only the operator who opened it may close it.

    Raises:
        NotFoundError: unknown or deactivated register
        BadRequestError: register already closed
        ForbiddenError: caller is not the current operator
    """
    if closing_balance_cents < 0:
        raise ValidationError("closing_balance must not be negative")

    def _op():
        register = _registers.require(register_id, for_update=True)
        if register.status == REGISTER_CLOSED:
            raise BadRequestError(f"Cash register {register.register_number} is already closed")
        if register.current_user_id != user_id:
            raise ForbiddenError("Only the current operator can close this register")

        register.status = REGISTER_CLOSED
        register.current_user_id = None
        register.current_balance_cents = closing_balance_cents
        register.last_balance_update = utcnow()
        _record(register, TXN_CLOSE, closing_balance_cents, "Register closed", user_id)
        db.session.commit()
        return register

    register = run_with_retry(_op)
    current_app.logger.info("Cash register %s closed by user %s", register.register_number, user_id)
    return register


# =============================================================================
# CASH MOVEMENTS (called inside payment transactions, no commit)
# =============================================================================

def record_cash_sale(register: CashRegister, amount_cents: int, payment_id: int, user_id: int | None) -> None:
    register.current_balance_cents += amount_cents
    register.last_balance_update = utcnow()
    _record(register, TXN_SALE, amount_cents, f"Cash payment {payment_id}", user_id, payment_id)


def record_cash_cancel(register: CashRegister, amount_cents: int, payment_id: int, user_id: int | None) -> None:
    register.current_balance_cents -= amount_cents
    register.last_balance_update = utcnow()
    _record(register, TXN_CANCEL, -amount_cents, f"Cancelled cash payment {payment_id}", user_id, payment_id)


# =============================================================================
# QUERIES
# =============================================================================

def list_registers() -> list[CashRegister]:
    return _registers.query().order_by(CashRegister.register_number.asc()).all()


def get_register(register_id: int) -> CashRegister:
    return _registers.require(register_id)


def list_transactions(
    register_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[CashRegisterTransaction]:
    _registers.require(register_id)
    query = db.session.query(CashRegisterTransaction).filter_by(cash_register_id=register_id)
    if start:
        query = query.filter(CashRegisterTransaction.transaction_date >= start)
    if end:
        query = query.filter(CashRegisterTransaction.transaction_date <= end)
    return query.order_by(CashRegisterTransaction.transaction_date.asc(), CashRegisterTransaction.id.asc()).all()


# =============================================================================
# PERIOD CLOSINGS (Tagesabschluss)
# =============================================================================

def closing_period(closing_type: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """[start, end) of the day, month or year containing `now` (UTC)."""
    now = now or utcnow()
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if closing_type == CLOSING_DAILY:
        return day, day + timedelta(days=1)
    if closing_type == CLOSING_MONTHLY:
        start = day.replace(day=1)
        if start.month == 12:
            return start, start.replace(year=start.year + 1, month=1)
        return start, start.replace(month=start.month + 1)
    if closing_type == CLOSING_YEARLY:
        start = day.replace(month=1, day=1)
        return start, start.replace(year=start.year + 1)
    raise ValidationError(f"Invalid closing type: {closing_type}. Must be one of {CLOSING_TYPES}")


def _closing_exists(register_id: int, closing_type: str, period_start: datetime) -> bool:
    return db.session.query(RegisterClosing.id).filter_by(
        cash_register_id=register_id,
        closing_type=closing_type,
        period_start=period_start,
    ).first() is not None


def _period_totals(register_id: int, start: datetime, end: datetime) -> tuple[int, int, int]:
    total, tax, count = db.session.query(
        func.coalesce(func.sum(Invoice.total_cents), 0),
        func.coalesce(func.sum(Invoice.tax_cents), 0),
        func.count(Invoice.id),
    ).filter(
        Invoice.is_active.is_(True),
        Invoice.cash_register_id == register_id,
        Invoice.status == INVOICE_PAID,
        Invoice.document_type == DOC_INVOICE,
        Invoice.invoice_date >= start,
        Invoice.invoice_date < end,
    ).one()
    return int(total), int(tax), int(count)


def perform_closing(register_id: int, user_id: int | None, closing_type: str,
                    now: datetime | None = None) -> RegisterClosing:
    """
    Close the current day, month or year of a register.

    Sums the PAID invoices booked on the register in the period, signs the
    totals on the connected TSE and stores the result.

    Raises:
        ValidationError: unknown closing type
        BadRequestError: no connected TSE, nothing paid in the period, or
            the device failed to sign
        NotFoundError: unknown or deactivated register
        ConflictError: the period is already closed
    """
    start, end = closing_period(closing_type, now)
    if not tse_service.has_signing_device():
        raise BadRequestError("TSE device is not connected")

    register = _registers.require(register_id)
    register_number = register.register_number
    if _closing_exists(register_id, closing_type, start):
        raise ConflictError(
            f"{closing_type.capitalize()} closing already performed for {register_number}",
            period_start=to_utc_z(start),
        )

    total_cents, tax_cents, count = _period_totals(register_id, start, end)
    if count == 0:
        raise BadRequestError(f"No transactions found for {register_number} in this period")
    db.session.commit()

    signed = tse_service.create_signature(
        f"CLOSING-{closing_type}-{register_number}-{day_stamp(start)}",
        total_cents,
        {"taxCents": tax_cents, "transactionCount": count},
    )

    closing = RegisterClosing(
        cash_register_id=register_id,
        user_id=user_id,
        closing_type=closing_type,
        period_start=start,
        period_end=end,
        total_cents=total_cents,
        tax_cents=tax_cents,
        transaction_count=count,
        tse_signature=signed["signature"],
        kassen_id=signed["kassen_id"],
        created_at=utcnow(),
    )
    db.session.add(closing)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(
            f"{closing_type.capitalize()} closing already performed for {register_number}",
            period_start=to_utc_z(start),
        )

    current_app.logger.info(
        "%s closing for %s by user %s: %s invoices, total=%s tax=%s",
        closing_type, register_number, user_id, count, total_cents, tax_cents,
    )
    return closing


def last_closing_date(register_id: int) -> datetime | None:
    """Start of the most recent daily closing period, if any."""
    return db.session.query(func.max(RegisterClosing.period_start)).filter(
        RegisterClosing.cash_register_id == register_id,
        RegisterClosing.closing_type == CLOSING_DAILY,
    ).scalar()


def can_perform_closing(register_id: int, now: datetime | None = None) -> bool:
    _registers.require(register_id)
    last = last_closing_date(register_id)
    today, _ = closing_period(CLOSING_DAILY, now)
    return last is None or last < today


def list_closings(
    register_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[RegisterClosing]:
    """Closings newest first, optionally for one register and a period_start window."""
    query = db.session.query(RegisterClosing)
    if register_id is not None:
        query = query.filter(RegisterClosing.cash_register_id == register_id)
    if start:
        query = query.filter(RegisterClosing.period_start >= start)
    if end:
        query = query.filter(RegisterClosing.period_start <= end)
    return query.order_by(RegisterClosing.period_start.desc(), RegisterClosing.id.desc()).all()


def summarize_closings(closings: list[RegisterClosing]) -> dict:
    daily = [c.total_cents for c in closings if c.closing_type == CLOSING_DAILY]
    return {
        "total_closings": len(closings),
        "total_cents": sum(c.total_cents for c in closings),
        "tax_cents": sum(c.tax_cents for c in closings),
        "transaction_count": sum(c.transaction_count for c in closings),
        "average_daily_cents": sum(daily) // len(daily) if daily else 0,
    }

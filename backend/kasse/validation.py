from __future__ import annotations

import enum
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import jsonify, request


# Largest single amount accepted anywhere (9,999,999.99 EUR)
MAX_AMOUNT_CENTS = 999_999_999


class ErrorKind(enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    BAD_REQUEST = "BAD_REQUEST"
    CONFLICT = "CONFLICT"
    FORBIDDEN = "FORBIDDEN"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FORBIDDEN: 403,
}


class ServiceError(Exception):
    """Expected business failure. Routes translate `kind` into an HTTP status."""

    kind = ErrorKind.BAD_REQUEST

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind.name}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class ValidationError(ServiceError):
    """400-level input problem."""
    kind = ErrorKind.VALIDATION


class BadRequestError(ServiceError):
    """400-level state problem (device not connected, register already open...)."""
    kind = ErrorKind.BAD_REQUEST


class ConflictError(ServiceError):
    """409-level business rule conflict (duplicate invoice number, second credit note)."""
    kind = ErrorKind.CONFLICT


class ForbiddenError(ServiceError):
    kind = ErrorKind.FORBIDDEN


def error_response(exc: ServiceError):
    return jsonify(exc.to_dict()), exc.kind.http_status


# =============================================================================
# INPUT COERCION
# =============================================================================

def to_cents(value: Any, field: str, *, allow_negative: bool = False) -> int:
    """
    Convert a euro amount from JSON into integer cents.

    Accepts ints, numeric strings and floats; floats go through Decimal(str(x))
    so 19.99 becomes 1999 and not 1998.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    if amount.as_tuple().exponent < -2:
        raise ValidationError(f"{field} must have at most two decimal places")

    cents = int(amount * 100)
    if not allow_negative and cents < 0:
        raise ValidationError(f"{field} must not be negative")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS / 100:.2f}")
    return cents


def to_int(value: Any, field: str, *, required: bool = True) -> int | None:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer")


def pick(data: dict, *names: str, default: Any = None) -> Any:
    """First present key among snake_case and camelCase spellings."""
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return default


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data

# Overview: Service-layer operations for TSE devices and fiscal signatures.

"""
Fiscal Signer (TSE)

WHY: Under RKSV every receipt must carry a signature from a certified
signing device before it is legally valid.

DEVICE STATES:
- Disconnected: cannot sign
- Connected: handshake succeeded, can_create_invoices=True

The device transport (app.extensions["fiscal_device"]) is only ever called
after the session's transaction has been committed, so slow hardware never
holds row locks.
"""

from flask import current_app

from ..extensions import db
from ..models import Invoice, TseDevice, active
from ..models.invoices import INVOICE_DRAFT, INVOICE_SENT
from ..validation import BadRequestError, ConflictError, NotFoundError
from kasse.time_utils import utcnow
from .concurrency import lock_for_update
from .fiscal_device import DeviceInfo, FiscalDevice, FiscalDeviceError
from .repository import Repository


_devices = Repository(TseDevice, "TSE device")
_invoices = Repository(Invoice, "Invoice")


def _transport() -> FiscalDevice:
    return current_app.extensions["fiscal_device"]


def _connected_device_query():
    return active(TseDevice).filter(
        TseDevice.is_connected.is_(True),
        TseDevice.can_create_invoices.is_(True),
    ).order_by(TseDevice.last_connection_time.desc(), TseDevice.id.desc())


# =============================================================================
# STATUS
# =============================================================================

def get_status() -> dict:
    """Status of the most recently connected active device."""
    device = active(TseDevice).order_by(
        TseDevice.is_connected.desc(),
        TseDevice.last_connection_time.desc(),
        TseDevice.id.desc(),
    ).first()
    if not device:
        return {
            "found": False,
            "is_connected": False,
            "can_create_invoices": False,
            "message": "No TSE device registered",
        }
    status = device.to_dict()
    status["found"] = True
    return status


def list_devices() -> list[TseDevice]:
    return _devices.query().order_by(TseDevice.serial_number.asc()).all()


def register_device(serial_number: str, kassen_id: str, vendor_id: str | None = None,
                    product_id: str | None = None, device_type: str = "USB") -> TseDevice:
    """Add a device record (used by `flask system init` and tests)."""
    if db.session.query(TseDevice).filter_by(serial_number=serial_number).first():
        raise ConflictError(f"TSE device {serial_number} already exists")
    device = _devices.add(TseDevice(
        serial_number=serial_number,
        kassen_id=kassen_id,
        vendor_id=vendor_id,
        product_id=product_id,
        device_type=device_type,
    ))
    db.session.commit()
    return device


def has_signing_device() -> bool:
    return _connected_device_query().first() is not None


# =============================================================================
# CONNECTION
# =============================================================================

def connect(serial_number: str) -> TseDevice:
    """
    Handshake with a registered device and mark it connected.

    Raises:
        NotFoundError: no active device with that serial
        BadRequestError: handshake failed (device recorded as disconnected)
    """
    device = active(TseDevice).filter(TseDevice.serial_number == serial_number).first()
    if not device:
        raise NotFoundError(f"TSE device {serial_number} not found")

    info = DeviceInfo.from_row(device)
    device_id = device.id
    db.session.commit()

    ok = _transport().handshake(info)

    device = lock_for_update(db.session.query(TseDevice).filter_by(id=device_id)).first()
    now = utcnow()
    if not ok:
        device.is_connected = False
        device.can_create_invoices = False
        device.error_message = "Device handshake failed"
        db.session.commit()
        current_app.logger.warning("TSE handshake failed for %s", serial_number)
        raise BadRequestError(f"TSE device {serial_number} handshake failed")

    device.is_connected = True
    device.can_create_invoices = True
    device.error_message = None
    device.last_connection_time = now
    db.session.commit()
    current_app.logger.info("TSE device %s connected (kassen_id=%s)", serial_number, device.kassen_id)
    return device


def disconnect() -> list[TseDevice]:
    """Disconnect every connected device. BadRequest when nothing is connected."""
    devices = lock_for_update(active(TseDevice).filter(TseDevice.is_connected.is_(True))).all()
    if not devices:
        raise BadRequestError("No TSE device is connected")

    for device in devices:
        device.is_connected = False
        device.can_create_invoices = False
    db.session.commit()

    current_app.logger.info("TSE disconnected: %s", ", ".join(d.serial_number for d in devices))
    return devices


# =============================================================================
# SIGNING
# =============================================================================

def create_signature(invoice_number: str, total_amount_cents: int, tax_details: dict | None = None) -> dict:
    """
    Sign a transaction on the connected device.

    Returns:
        {"signature", "timestamp", "kassen_id", "serial_number", "device_id"}

    Raises:
        BadRequestError: no connected device that can create invoices, or the
            device failed to sign
    """
    device = _connected_device_query().first()
    if not device:
        raise BadRequestError("No TSE device is connected")

    info = DeviceInfo.from_row(device)
    device_id = device.id
    db.session.commit()

    now = utcnow()
    payload = {
        "invoiceNumber": invoice_number,
        "totalAmountCents": total_amount_cents,
        "taxDetails": tax_details or {},
        "timestamp": now.isoformat(),
    }
    try:
        signature = _transport().sign(info, payload)
    except FiscalDeviceError as exc:
        device = db.session.get(TseDevice, device_id)
        device.error_message = str(exc)[:500]
        db.session.commit()
        current_app.logger.warning("TSE signing failed for %s: %s", invoice_number, exc)
        raise BadRequestError(f"TSE signing failed: {exc}")

    device = lock_for_update(db.session.query(TseDevice).filter_by(id=device_id)).first()
    device.last_signature_time = now
    device.error_message = None
    db.session.commit()

    return {
        "signature": signature,
        "timestamp": now,
        "kassen_id": info.kassen_id,
        "serial_number": info.serial_number,
        "device_id": device_id,
    }


def sign_invoice(invoice_id: int) -> Invoice:
    """
    Attach a TSE signature to an invoice.

    A DRAFT invoice moves to SENT; the device's pending-invoice counter
    grows by one until FinanzOnline accepts the submission.
    """
    invoice = _invoices.require(invoice_id)
    if invoice.tse_signature:
        raise ConflictError(f"Invoice {invoice.invoice_number} is already signed")

    result = create_signature(invoice.invoice_number, invoice.total_cents, invoice.tax_details)

    invoice = _invoices.require(invoice_id, for_update=True)
    invoice.tse_signature = result["signature"]
    invoice.tse_timestamp = result["timestamp"]
    invoice.kassen_id = result["kassen_id"]
    if invoice.status == INVOICE_DRAFT:
        invoice.status = INVOICE_SENT

    device = lock_for_update(db.session.query(TseDevice).filter_by(id=result["device_id"])).first()
    device.pending_invoices += 1
    db.session.commit()

    current_app.logger.info("Invoice %s signed by %s", invoice.invoice_number, result["serial_number"])
    return invoice

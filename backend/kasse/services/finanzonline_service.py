# Overview: Service-layer operations for FinanzOnline reporting; config, submissions and audit trail.

"""
FinanzOnline Submitter

WHY: Signed invoices are reported to the Austrian tax authority. The
remote endpoint is slow and unreliable, so the local audit trail, not the
HTTP response, is the record of what was attempted.

DESIGN PRINCIPLES:
- Every submission attempt writes a FinanzOnlineSubmission row and commits
  it before the caller sees the outcome (record-then-report)
- Submissions need a connected, FinanzOnline-enabled TSE device
- The transport (app.extensions["finanzonline_client"]) is called outside
  any open transaction, with a timeout and bounded retry
"""

import secrets
import time

import httpx
from flask import current_app

from ..extensions import db
from ..models import CompanySettings, FinanzOnlineSubmission, Invoice, TseDevice, active
from ..validation import BadRequestError, NotFoundError, ValidationError
from kasse.time_utils import compact_stamp, to_utc_z, utcnow
from .concurrency import lock_for_update


class FinanzOnlineError(Exception):
    """Remote endpoint unreachable or rejected the submission."""

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


# =============================================================================
# TRANSPORTS
# =============================================================================

class FinanzOnlineClient:
    def submit(self, config: dict, payload: dict) -> tuple[dict, int]:
        """Returns (response body, number of HTTP tries it took)."""
        raise NotImplementedError

    def test_connection(self, config: dict) -> bool:
        raise NotImplementedError


class SimulatedFinanzOnlineClient(FinanzOnlineClient):
    """Accepts everything and hands back a reference id."""

    def submit(self, config: dict, payload: dict) -> tuple[dict, int]:
        return {
            "status": "ACCEPTED",
            "referenceId": f"FO-{compact_stamp(utcnow())}-{secrets.token_hex(4).upper()}",
            "invoiceNumber": payload.get("invoiceNumber"),
        }, 1

    def test_connection(self, config: dict) -> bool:
        return bool(config.get("api_url"))


class HttpFinanzOnlineClient(FinanzOnlineClient):
    """
    JSON-over-HTTP client with a per-request timeout.

    Transport errors and 5xx responses are retried with exponential backoff,
    `retry_attempts` extra tries at most (taken from the settings row).
    A 2xx body that is not a JSON object counts as a failed submission.
    """

    def __init__(self, timeout: float = 10.0, backoff_base: float = 0.5,
                 transport: httpx.BaseTransport | None = None):
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.transport = transport

    def _client(self, config: dict) -> httpx.Client:
        return httpx.Client(
            base_url=config["api_url"].rstrip("/"),
            timeout=self.timeout,
            transport=self.transport,
            headers={"X-FinanzOnline-User": config.get("username") or ""},
        )

    def submit(self, config: dict, payload: dict) -> tuple[dict, int]:
        attempts = 1 + max(0, int(config.get("retry_attempts") or 0))
        last_error = None
        try:
            with self._client(config) as client:
                for attempt in range(attempts):
                    tries = attempt + 1
                    try:
                        response = client.post("/invoices", json=payload)
                    except httpx.TransportError as exc:
                        last_error = exc
                    else:
                        if response.status_code < 400:
                            return _decode(response, tries), tries
                        if response.status_code < 500:
                            raise FinanzOnlineError(
                                f"FinanzOnline rejected submission ({response.status_code}): {response.text[:200]}",
                                attempts=tries,
                            )
                        last_error = f"HTTP {response.status_code}"
                    if attempt < attempts - 1:
                        time.sleep(self.backoff_base * (2 ** attempt))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FinanzOnlineError(f"FinanzOnline request failed: {exc}") from exc
        raise FinanzOnlineError(
            f"FinanzOnline unreachable after {attempts} attempts: {last_error}",
            attempts=attempts,
        )

    def test_connection(self, config: dict) -> bool:
        try:
            with self._client(config) as client:
                response = client.get("/status")
            return response.status_code < 400
        except httpx.TransportError:
            return False


def _decode(response: httpx.Response, tries: int) -> dict:
    try:
        body = response.json()
    except ValueError as exc:
        raise FinanzOnlineError(
            f"FinanzOnline returned a non-JSON response ({response.status_code}): {response.text[:200]}",
            attempts=tries,
        ) from exc
    if not isinstance(body, dict):
        raise FinanzOnlineError("FinanzOnline response is not a JSON object", attempts=tries)
    return body


def build_finanzonline_client(config) -> FinanzOnlineClient:
    """Pick the transport from FINANZONLINE_MODE ("simulated" or "http")."""
    mode = str(config.get("FINANZONLINE_MODE", "simulated")).lower()
    if mode == "http":
        return HttpFinanzOnlineClient(timeout=config.get("FINANZONLINE_TIMEOUT_SECONDS", 10.0))
    if mode != "simulated":
        raise ValueError(f"Unknown FINANZONLINE_MODE: {mode}")
    return SimulatedFinanzOnlineClient()


def _client() -> FinanzOnlineClient:
    return current_app.extensions["finanzonline_client"]


# =============================================================================
# CONFIGURATION
# =============================================================================

def _settings(*, for_update: bool = False) -> CompanySettings:
    query = db.session.query(CompanySettings).order_by(CompanySettings.id.asc())
    if for_update:
        query = lock_for_update(query)
    settings = query.first()
    if not settings:
        raise NotFoundError("Company settings not found")
    return settings


def get_config() -> dict:
    return _settings().finanzonline_config()


def update_config(fields: dict) -> dict:
    """
    Update the FinanzOnline section of the company settings.

    Raises:
        NotFoundError: no settings row
        ValidationError: empty api_url/username, negative retry_attempts,
            non-positive submit_interval
    """
    settings = _settings(for_update=True)

    if "api_url" in fields:
        api_url = (fields["api_url"] or "").strip()
        if not api_url:
            raise ValidationError("api_url must not be empty")
        settings.finanzonline_api_url = api_url
    if "username" in fields:
        username = (fields["username"] or "").strip()
        if not username:
            raise ValidationError("username must not be empty")
        settings.finanzonline_username = username
    if "retry_attempts" in fields:
        retry = fields["retry_attempts"]
        if not isinstance(retry, int) or isinstance(retry, bool) or retry < 0:
            raise ValidationError("retry_attempts must be a non-negative integer")
        settings.finanzonline_retry_attempts = retry
    if "submit_interval" in fields:
        interval = fields["submit_interval"]
        if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
            raise ValidationError("submit_interval must be a positive integer")
        settings.finanzonline_submit_interval = interval
    if "auto_submit" in fields:
        settings.finanzonline_auto_submit = bool(fields["auto_submit"])
    if "enable_validation" in fields:
        settings.finanzonline_enable_validation = bool(fields["enable_validation"])

    db.session.commit()
    current_app.logger.info("FinanzOnline config updated")
    return settings.finanzonline_config()


def _effective_config(device: TseDevice | None = None) -> dict:
    settings = db.session.query(CompanySettings).order_by(CompanySettings.id.asc()).first()
    config = settings.finanzonline_config() if settings else {
        "api_url": "",
        "username": "",
        "retry_attempts": 3,
    }
    if not config["api_url"]:
        config["api_url"] = current_app.config.get("FINANZONLINE_API_URL", "")
    if not config["username"] and device is not None:
        config["username"] = device.finanzonline_username or ""
    return config


# =============================================================================
# STATUS / SUBMISSION
# =============================================================================

def _enabled_device_query():
    return active(TseDevice).filter(
        TseDevice.is_connected.is_(True),
        TseDevice.finanzonline_enabled.is_(True),
    ).order_by(TseDevice.last_connection_time.desc(), TseDevice.id.desc())


def get_status() -> dict:
    device = _enabled_device_query().first()
    if not device:
        return {
            "is_connected": False,
            "device_serial": None,
            "pending_invoices": 0,
            "pending_reports": 0,
            "last_sync": None,
        }
    return {
        "is_connected": True,
        "device_serial": device.serial_number,
        "pending_invoices": device.pending_invoices,
        "pending_reports": device.pending_reports,
        "last_sync": to_utc_z(device.last_finanzonline_sync) if device.last_finanzonline_sync else None,
    }


def _record(*, invoice_id, invoice_number, device_id, payload, response, success, error, attempts, user_id):
    submission = FinanzOnlineSubmission(
        invoice_id=invoice_id,
        invoice_number=invoice_number,
        tse_device_id=device_id,
        payload=payload,
        response=response,
        success=success,
        error_message=error[:500] if error else None,
        attempts=attempts,
        submitted_by_user_id=user_id,
        submitted_at=utcnow(),
    )
    db.session.add(submission)
    return submission


def submit_invoice(
    invoice_number: str,
    total_amount_cents: int,
    invoice_id: int | None = None,
    user_id: int | None = None,
) -> FinanzOnlineSubmission:
    """
    Report an invoice to FinanzOnline.

    Returns:
        The successful FinanzOnlineSubmission row

    Raises:
        ValidationError: missing invoice number
        NotFoundError: invoice_id given but unknown
        BadRequestError: no connected FinanzOnline-enabled device, or the
            remote call failed. The failed attempt is already committed.

    Any other exception from the client is recorded the same way and re-raised.
    """
    if not invoice_number:
        raise ValidationError("invoice_number is required")
    if invoice_id is not None and not db.session.get(Invoice, invoice_id):
        raise NotFoundError(f"Invoice {invoice_id} not found")

    payload = {
        "invoiceNumber": invoice_number,
        "totalAmountCents": total_amount_cents,
        "invoiceId": invoice_id,
    }

    device = _enabled_device_query().first()
    if not device:
        submission = _record(
            invoice_id=invoice_id, invoice_number=invoice_number, device_id=None,
            payload=payload, response=None, success=False,
            error="No connected FinanzOnline-enabled TSE device", attempts=0, user_id=user_id,
        )
        db.session.commit()
        current_app.logger.warning("FinanzOnline submission of %s refused: no enabled device", invoice_number)
        raise BadRequestError(
            "No connected FinanzOnline-enabled TSE device",
            submission_id=submission.id,
        )

    device_id = device.id
    config = _effective_config(device)
    payload["kassenId"] = device.kassen_id
    db.session.commit()

    try:
        response, attempts = _client().submit(config, payload)
        error = None
    except FinanzOnlineError as exc:
        response = None
        attempts = exc.attempts
        error = str(exc)
    except Exception as exc:
        _record(
            invoice_id=invoice_id, invoice_number=invoice_number, device_id=device_id,
            payload=payload, response=None, success=False,
            error=f"{type(exc).__name__}: {exc}", attempts=1, user_id=user_id,
        )
        db.session.commit()
        current_app.logger.exception("FinanzOnline submission of %s crashed", invoice_number)
        raise

    submission = _record(
        invoice_id=invoice_id, invoice_number=invoice_number, device_id=device_id,
        payload=payload, response=response, success=error is None,
        error=error, attempts=attempts, user_id=user_id,
    )

    if error is None:
        device = lock_for_update(db.session.query(TseDevice).filter_by(id=device_id)).first()
        device.pending_invoices = max(0, device.pending_invoices - 1)
        device.last_finanzonline_sync = utcnow()

    db.session.commit()

    if error is not None:
        current_app.logger.warning("FinanzOnline submission of %s failed: %s", invoice_number, error)
        raise BadRequestError(f"FinanzOnline submission failed: {error}", submission_id=submission.id)

    current_app.logger.info("Invoice %s submitted to FinanzOnline", invoice_number)
    return submission


def submission_history(invoice_id: int) -> list[FinanzOnlineSubmission]:
    return db.session.query(FinanzOnlineSubmission).filter_by(
        invoice_id=invoice_id,
    ).order_by(FinanzOnlineSubmission.submitted_at.desc(), FinanzOnlineSubmission.id.desc()).all()


def test_connection() -> dict:
    config = _effective_config(_enabled_device_query().first())
    db.session.commit()
    if not config["api_url"]:
        return {"success": False, "message": "FinanzOnline API URL not configured"}

    ok = _client().test_connection(config)
    if not ok:
        current_app.logger.warning("FinanzOnline connection test failed for %s", config["api_url"])
    return {
        "success": ok,
        "message": "Connection successful" if ok else "Connection failed",
        "api_url": config["api_url"],
    }

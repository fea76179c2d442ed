from __future__ import annotations

from ..extensions import db
from kasse.time_utils import to_utc_z
from .base import SoftDeleteMixin


class TseDevice(SoftDeleteMixin, db.Model):
    """
    Fiscal signing device (TSE / Signaturerstellungseinheit).

    Connection state is persisted so every worker process sees the same
    device status. The actual handshake and signing go through the
    FiscalDevice transport configured on the app.
    """
    __tablename__ = "tse_devices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    serial_number = db.Column(db.String(100), nullable=False, unique=True)
    device_type = db.Column(db.String(50), nullable=False, default="USB")
    vendor_id = db.Column(db.String(20), nullable=True)
    product_id = db.Column(db.String(20), nullable=True)
    kassen_id = db.Column(db.String(50), nullable=False)

    is_connected = db.Column(db.Boolean, nullable=False, default=False)
    can_create_invoices = db.Column(db.Boolean, nullable=False, default=False)
    certificate_status = db.Column(db.String(20), nullable=False, default="VALID")
    memory_status = db.Column(db.String(20), nullable=False, default="OK")
    error_message = db.Column(db.String(500), nullable=True)

    last_connection_time = db.Column(db.DateTime(timezone=True), nullable=True)
    last_signature_time = db.Column(db.DateTime(timezone=True), nullable=True)

    finanzonline_enabled = db.Column(db.Boolean, nullable=False, default=False)
    finanzonline_username = db.Column(db.String(100), nullable=True)
    pending_invoices = db.Column(db.Integer, nullable=False, default=0)
    pending_reports = db.Column(db.Integer, nullable=False, default=0)
    last_finanzonline_sync = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "device_type": self.device_type,
            "vendor_id": self.vendor_id,
            "product_id": self.product_id,
            "kassen_id": self.kassen_id,
            "is_connected": self.is_connected,
            "can_create_invoices": self.can_create_invoices,
            "certificate_status": self.certificate_status,
            "memory_status": self.memory_status,
            "error_message": self.error_message,
            "last_connection_time": to_utc_z(self.last_connection_time) if self.last_connection_time else None,
            "last_signature_time": to_utc_z(self.last_signature_time) if self.last_signature_time else None,
            "finanzonline_enabled": self.finanzonline_enabled,
            "pending_invoices": self.pending_invoices,
            "pending_reports": self.pending_reports,
            "last_finanzonline_sync": to_utc_z(self.last_finanzonline_sync) if self.last_finanzonline_sync else None,
            "is_active": self.is_active,
        }


class CompanySettings(db.Model):
    """Single-row company profile and FinanzOnline transport configuration."""
    __tablename__ = "company_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(100), nullable=False)
    company_tax_number = db.Column(db.String(20), nullable=False)
    company_address = db.Column(db.String(200), nullable=False, default="")
    company_phone = db.Column(db.String(20), nullable=True)
    company_email = db.Column(db.String(100), nullable=True)

    finanzonline_api_url = db.Column(db.String(255), nullable=True)
    finanzonline_username = db.Column(db.String(100), nullable=True)
    finanzonline_auto_submit = db.Column(db.Boolean, nullable=False, default=False)
    finanzonline_submit_interval = db.Column(db.Integer, nullable=False, default=60)
    finanzonline_retry_attempts = db.Column(db.Integer, nullable=False, default=3)
    finanzonline_enable_validation = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def company_profile(self) -> dict:
        return {
            "company_name": self.company_name,
            "company_tax_number": self.company_tax_number,
            "company_address": self.company_address,
            "company_phone": self.company_phone,
            "company_email": self.company_email,
        }

    def finanzonline_config(self) -> dict:
        return {
            "api_url": self.finanzonline_api_url or "",
            "username": self.finanzonline_username or "",
            "auto_submit": self.finanzonline_auto_submit,
            "submit_interval": self.finanzonline_submit_interval,
            "retry_attempts": self.finanzonline_retry_attempts,
            "enable_validation": self.finanzonline_enable_validation,
        }


class FinanzOnlineSubmission(db.Model):
    """
    Append-only record of every FinanzOnline submission attempt.

    WHY: The audit trail, not the HTTP response, answers "was this invoice
    ever submitted". Rows are written and committed before the caller sees
    a result, for failures as well as successes.
    """
    __tablename__ = "finanzonline_submissions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    invoice_number = db.Column(db.String(50), nullable=True)
    tse_device_id = db.Column(db.Integer, db.ForeignKey("tse_devices.id"), nullable=True)

    payload = db.Column(db.JSON, nullable=True)
    response = db.Column(db.JSON, nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=False)
    error_message = db.Column(db.String(500), nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=1)

    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice_number,
            "tse_device_id": self.tse_device_id,
            "payload": self.payload,
            "response": self.response,
            "success": self.success,
            "error_message": self.error_message,
            "attempts": self.attempts,
            "submitted_by_user_id": self.submitted_by_user_id,
            "submitted_at": to_utc_z(self.submitted_at),
        }

"""
FinanzOnline submitter tests.

Every submission attempt, accepted or not, must leave a committed row in
the submission history.
"""

import httpx
import pytest

from kasse.extensions import db
from kasse.models import FinanzOnlineSubmission, TseDevice
from kasse.services import finanzonline_service, tse_service
from kasse.services.finanzonline_service import FinanzOnlineError, HttpFinanzOnlineClient
from kasse.validation import BadRequestError, NotFoundError, ValidationError


class TestSubmitInvoice:

    def test_without_enabled_device_records_attempt(self, company, make_invoice, cashier):
        invoice = make_invoice()

        with pytest.raises(BadRequestError) as excinfo:
            finanzonline_service.submit_invoice(invoice.invoice_number, invoice.total_cents,
                                                invoice_id=invoice.id, user_id=cashier.id)

        rows = db.session.query(FinanzOnlineSubmission).all()
        assert len(rows) == 1
        assert rows[0].success is False
        assert rows[0].attempts == 0
        assert excinfo.value.details["submission_id"] == rows[0].id

    def test_success_decrements_pending(self, connected_tse, make_invoice, fo_client):
        invoice = make_invoice()
        tse_service.sign_invoice(invoice.id)

        submission = finanzonline_service.submit_invoice(invoice.invoice_number, invoice.total_cents,
                                                         invoice_id=invoice.id)

        assert submission.success is True
        assert submission.response["status"] == "ACCEPTED"
        assert fo_client.submitted[0]["kassenId"] == "KASSE-001"

        db.session.expire_all()
        device = db.session.get(TseDevice, connected_tse.id)
        assert device.pending_invoices == 0
        assert device.last_finanzonline_sync is not None

    def test_pending_counter_never_negative(self, connected_tse, make_invoice):
        invoice = make_invoice()
        finanzonline_service.submit_invoice(invoice.invoice_number, invoice.total_cents)
        db.session.expire_all()
        assert db.session.get(TseDevice, connected_tse.id).pending_invoices == 0

    def test_remote_failure_records_attempt(self, connected_tse, make_invoice, fo_client):
        invoice = make_invoice()
        fo_client.fail = True

        with pytest.raises(BadRequestError):
            finanzonline_service.submit_invoice(invoice.invoice_number, invoice.total_cents, invoice_id=invoice.id)

        history = finanzonline_service.submission_history(invoice.id)
        assert len(history) == 1
        assert history[0].success is False
        assert "unreachable" in history[0].error_message

    def test_every_attempt_leaves_a_row(self, tse_device, make_invoice, fo_client):
        invoice = make_invoice()

        with pytest.raises(BadRequestError):
            finanzonline_service.submit_invoice(invoice.invoice_number, 100, invoice_id=invoice.id)

        tse_service.connect(tse_device.serial_number)
        fo_client.fail = True
        with pytest.raises(BadRequestError):
            finanzonline_service.submit_invoice(invoice.invoice_number, 100, invoice_id=invoice.id)

        fo_client.fail = False
        finanzonline_service.submit_invoice(invoice.invoice_number, 100, invoice_id=invoice.id)

        history = finanzonline_service.submission_history(invoice.id)
        assert len(history) == 3
        assert sorted(s.success for s in history) == [False, False, True]

    def test_attempt_count_is_recorded(self, connected_tse, make_invoice, fo_client):
        invoice = make_invoice()
        fo_client.fail = True

        with pytest.raises(BadRequestError):
            finanzonline_service.submit_invoice(invoice.invoice_number, invoice.total_cents, invoice_id=invoice.id)

        assert finanzonline_service.submission_history(invoice.id)[0].attempts == 4

    def test_html_answer_records_failed_attempt(self, app, connected_tse, make_invoice):
        app.extensions['finanzonline_client'] = HttpFinanzOnlineClient(
            backoff_base=0,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>OK</html>")),
        )
        invoice = make_invoice()

        with pytest.raises(BadRequestError):
            finanzonline_service.submit_invoice(invoice.invoice_number, invoice.total_cents, invoice_id=invoice.id)

        history = finanzonline_service.submission_history(invoice.id)
        assert len(history) == 1
        assert history[0].success is False
        assert history[0].attempts == 1
        assert "non-JSON" in history[0].error_message

        db.session.expire_all()
        assert db.session.get(TseDevice, connected_tse.id).last_finanzonline_sync is None

    def test_unexpected_client_error_still_leaves_a_row(self, connected_tse, make_invoice, fo_client, monkeypatch):
        def explode(config, payload):
            raise RuntimeError("socket closed")

        monkeypatch.setattr(fo_client, "submit", explode)
        invoice = make_invoice()

        with pytest.raises(RuntimeError):
            finanzonline_service.submit_invoice(invoice.invoice_number, invoice.total_cents, invoice_id=invoice.id)

        db.session.expire_all()
        history = finanzonline_service.submission_history(invoice.id)
        assert len(history) == 1
        assert history[0].success is False
        assert "socket closed" in history[0].error_message

    def test_missing_invoice_number(self, app):
        with pytest.raises(ValidationError):
            finanzonline_service.submit_invoice("", 100)

    def test_unknown_invoice_id(self, app):
        with pytest.raises(NotFoundError):
            finanzonline_service.submit_invoice("INV-1", 100, invoice_id=999)


class TestConfig:

    def test_config_requires_settings_row(self, app):
        with pytest.raises(NotFoundError):
            finanzonline_service.get_config()

    def test_update_config(self, company):
        config = finanzonline_service.update_config({"retry_attempts": 5, "auto_submit": True})
        assert config["retry_attempts"] == 5
        assert config["auto_submit"] is True
        assert config["api_url"] == "https://fo.test/api"

    @pytest.mark.parametrize("fields", [
        {"api_url": ""},
        {"username": "  "},
        {"retry_attempts": -1},
        {"submit_interval": 0},
    ])
    def test_invalid_config(self, company, fields):
        with pytest.raises(ValidationError):
            finanzonline_service.update_config(fields)

    def test_status(self, connected_tse):
        status = finanzonline_service.get_status()
        assert status["is_connected"] is True
        assert status["device_serial"] == connected_tse.serial_number

    def test_connection_check(self, company, fo_client):
        assert finanzonline_service.test_connection()["success"] is True
        fo_client.reachable = False
        assert finanzonline_service.test_connection()["success"] is False


class TestHttpClient:

    CONFIG = {"api_url": "https://fo.test/api", "username": "fo-user", "retry_attempts": 2}

    def test_retries_then_succeeds(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(502)
            return httpx.Response(200, json={"status": "ACCEPTED", "referenceId": "FO-1"})

        client = HttpFinanzOnlineClient(backoff_base=0, transport=httpx.MockTransport(handler))
        response, attempts = client.submit(self.CONFIG, {"invoiceNumber": "INV-1"})
        assert response["referenceId"] == "FO-1"
        assert attempts == 2
        assert len(calls) == 2
        assert calls[0].headers["X-FinanzOnline-User"] == "fo-user"

    def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(422, text="invalid payload")

        client = HttpFinanzOnlineClient(backoff_base=0, transport=httpx.MockTransport(handler))
        with pytest.raises(FinanzOnlineError):
            client.submit(self.CONFIG, {})
        assert len(calls) == 1

    def test_attempts_bounded_by_retry_setting(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        client = HttpFinanzOnlineClient(backoff_base=0, transport=httpx.MockTransport(handler))
        with pytest.raises(FinanzOnlineError) as excinfo:
            client.submit(self.CONFIG, {})
        assert len(calls) == 3
        assert excinfo.value.attempts == 3

    def test_non_json_success_body_is_an_error(self):
        client = HttpFinanzOnlineClient(
            backoff_base=0,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>OK</html>")),
        )
        with pytest.raises(FinanzOnlineError, match="non-JSON"):
            client.submit(self.CONFIG, {})


# =============================================================================
# API
# =============================================================================


class TestFinanzOnlineApi:

    def test_submit_without_device_is_400_and_recorded(self, client, cashier_headers, make_invoice):
        invoice = make_invoice()
        resp = client.post("/api/finanzonline/submit-invoice", json={
            "invoiceNumber": invoice.invoice_number, "totalAmount": 120.0, "invoiceId": invoice.id,
        }, headers=cashier_headers)
        assert resp.status_code == 400

        resp = client.get(f"/api/finanzonline/history/{invoice.id}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 1

    def test_config_update_requires_administrator(self, client, manager_headers, admin_headers, company):
        body = {"retryAttempts": 4}
        assert client.put("/api/finanzonline/config", json=body, headers=manager_headers).status_code == 403

        resp = client.put("/api/finanzonline/config", json=body, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["config"]["retry_attempts"] == 4

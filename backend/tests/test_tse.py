"""
Fiscal signer tests.

Verifies:
- Signature creation is refused (400) whenever no device is connected,
  regardless of the request body
- Handshake failure leaves the device disconnected with an error message
- Signing an invoice stores the signature and moves DRAFT to SENT
- Simulated and network transports behave as configured
"""

import re

import httpx
import pytest

from kasse.extensions import db
from kasse.models import TseDevice
from kasse.models.invoices import INVOICE_SENT
from kasse.services import tse_service
from kasse.services.fiscal_device import (
    DeviceInfo, FiscalDeviceError, NetworkFiscalDevice, SimulatedFiscalDevice,
    EPSON_VENDOR_ID, EPSON_PRODUCT_ID, build_fiscal_device,
)
from kasse.validation import BadRequestError, ConflictError, NotFoundError


EPSON = DeviceInfo("TSE-SIM-001", "KASSE-001", EPSON_VENDOR_ID, EPSON_PRODUCT_ID)


class TestConnect:

    def test_connect_marks_device_ready(self, tse_device):
        device = tse_service.connect(tse_device.serial_number)
        assert device.is_connected is True
        assert device.can_create_invoices is True
        assert device.last_connection_time is not None
        assert tse_service.has_signing_device() is True

    def test_unknown_serial(self, app):
        with pytest.raises(NotFoundError):
            tse_service.connect("TSE-DOES-NOT-EXIST")

    def test_handshake_failure(self, tse_device, fiscal_device):
        fiscal_device.handshake_ok = False

        with pytest.raises(BadRequestError):
            tse_service.connect(tse_device.serial_number)

        db.session.expire_all()
        device = db.session.get(TseDevice, tse_device.id)
        assert device.is_connected is False
        assert device.error_message == "Device handshake failed"

    def test_disconnect(self, connected_tse):
        devices = tse_service.disconnect()
        assert [d.id for d in devices] == [connected_tse.id]
        assert tse_service.has_signing_device() is False

        with pytest.raises(BadRequestError):
            tse_service.disconnect()

    def test_status_without_device(self, app):
        status = tse_service.get_status()
        assert status["found"] is False
        assert status["is_connected"] is False


class TestSignatures:

    def test_signature_requires_connected_device(self, tse_device):
        with pytest.raises(BadRequestError):
            tse_service.create_signature("INV-001", 10000)

    def test_signature_from_connected_device(self, connected_tse):
        result = tse_service.create_signature("INV-001", 10000, {"STANDARD": {"rate_bps": 2000}})
        assert result["signature"].startswith(f"TSE-{connected_tse.serial_number}-")
        assert result["kassen_id"] == "KASSE-001"

        db.session.expire_all()
        assert db.session.get(TseDevice, connected_tse.id).last_signature_time is not None

    def test_device_failure_is_bad_request(self, connected_tse, fiscal_device):
        fiscal_device.fail_sign = True
        with pytest.raises(BadRequestError):
            tse_service.create_signature("INV-001", 10000)

    def test_sign_invoice(self, connected_tse, make_invoice):
        invoice = make_invoice()
        signed = tse_service.sign_invoice(invoice.id)

        assert signed.tse_signature
        assert signed.tse_timestamp is not None
        assert signed.kassen_id == "KASSE-001"
        assert signed.status == INVOICE_SENT

        db.session.expire_all()
        assert db.session.get(TseDevice, connected_tse.id).pending_invoices == 1

        with pytest.raises(ConflictError):
            tse_service.sign_invoice(invoice.id)


class TestTransports:

    def test_simulated_handshake_accepts_only_epson(self):
        device = SimulatedFiscalDevice()
        assert device.handshake(EPSON) is True
        assert device.handshake(DeviceInfo("X", "K", "VID_0000", EPSON_PRODUCT_ID)) is False

    def test_simulated_signature_format(self):
        signature = SimulatedFiscalDevice().sign(EPSON, {})
        assert re.fullmatch(r"TSE-TSE-SIM-001-\d{14}-[0-9A-F]{8}", signature)

    def test_network_device_retries_server_errors(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"signature": "JWS.PAYLOAD.SIG"})

        device = NetworkFiscalDevice("http://tse.test", attempts=3, backoff_base=0,
                                     transport=httpx.MockTransport(handler))
        assert device.sign(EPSON, {"invoiceNumber": "INV-1"}) == "JWS.PAYLOAD.SIG"
        assert calls == ["/sign", "/sign", "/sign"]

    def test_network_device_gives_up(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        device = NetworkFiscalDevice("http://tse.test", attempts=2, backoff_base=0,
                                     transport=httpx.MockTransport(handler))
        with pytest.raises(FiscalDeviceError):
            device.sign(EPSON, {})
        assert device.handshake(EPSON) is False

    def test_network_device_html_answer_is_device_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="<html>OK</html>")

        device = NetworkFiscalDevice("http://tse.test", attempts=3, backoff_base=0,
                                     transport=httpx.MockTransport(handler))
        with pytest.raises(FiscalDeviceError, match="non-JSON"):
            device.sign(EPSON, {})
        assert len(calls) == 1
        assert device.handshake(EPSON) is False

    def test_html_gateway_answer_is_bad_request(self, app, connected_tse):
        app.extensions['fiscal_device'] = NetworkFiscalDevice(
            "http://tse.test", attempts=1, backoff_base=0,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>OK</html>")),
        )
        with pytest.raises(BadRequestError):
            tse_service.create_signature("INV-1", 12000, {})

    def test_build_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            build_fiscal_device({"FISCAL_DEVICE": "usb-magic"})


# =============================================================================
# API
# =============================================================================


class TestTseApi:

    @pytest.mark.parametrize("body", [
        {"invoiceNumber": "INV-001", "totalAmount": 10.0},
        {},
        {"totalAmount": "not-a-number"},
    ])
    def test_signature_without_device_is_400(self, client, cashier_headers, body):
        resp = client.post("/api/tse/signature", json=body, headers=cashier_headers)
        assert resp.status_code == 400

    def test_signature_with_non_json_body_is_400(self, client, cashier_headers):
        resp = client.post("/api/tse/signature", data="garbage", headers=cashier_headers)
        assert resp.status_code == 400

    def test_connect_and_sign(self, client, cashier_headers, tse_device):
        resp = client.post("/api/tse/connect", json={"serialNumber": tse_device.serial_number},
                           headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["device"]["is_connected"] is True

        resp = client.post("/api/tse/signature", json={"invoiceNumber": "INV-001", "totalAmount": 12.5},
                           headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["kassenId"] == "KASSE-001"
        assert resp.json["timestamp"].endswith("Z")

    def test_connect_unknown_serial_is_404(self, client, cashier_headers):
        resp = client.post("/api/tse/connect", json={"serialNumber": "NOPE"}, headers=cashier_headers)
        assert resp.status_code == 404

# Overview: Transports for the fiscal signing device (TSE); simulated and HTTP gateway variants.

"""
Fiscal Device transports

WHY: Signing is slow, fallible hardware I/O. tse_service talks to the device
only through this interface so tests inject a deterministic fake and
production points at a real gateway.

Callers pass a DeviceInfo snapshot, never an ORM row, so no database
transaction is held open while the device works.
"""

import secrets
import time
from dataclasses import dataclass

import httpx

from kasse.time_utils import compact_stamp, utcnow


# Epson TSE USB identifiers
EPSON_VENDOR_ID = "VID_04B8"
EPSON_PRODUCT_ID = "PID_0E15"


class FiscalDeviceError(Exception):
    """Device unreachable or refused the request."""
    pass


@dataclass(frozen=True)
class DeviceInfo:
    serial_number: str
    kassen_id: str
    vendor_id: str | None = None
    product_id: str | None = None

    @classmethod
    def from_row(cls, device) -> "DeviceInfo":
        return cls(
            serial_number=device.serial_number,
            kassen_id=device.kassen_id,
            vendor_id=device.vendor_id,
            product_id=device.product_id,
        )


class FiscalDevice:
    """Capability interface for the signing hardware."""

    def handshake(self, device: DeviceInfo) -> bool:
        raise NotImplementedError

    def sign(self, device: DeviceInfo, payload: dict) -> str:
        raise NotImplementedError


class SimulatedFiscalDevice(FiscalDevice):
    """
    Stand-in for a USB TSE.

    The handshake only accepts the Epson vendor/product pair. Signatures are
    TSE-<serial>-<yyyymmddHHMMSS>-<8 hex>; they carry no cryptographic value.
    """

    def __init__(self, latency_ms: int = 0):
        self.latency_ms = latency_ms

    def _wait(self):
        if self.latency_ms > 0:
            time.sleep(self.latency_ms / 1000)

    def handshake(self, device: DeviceInfo) -> bool:
        self._wait()
        return device.vendor_id == EPSON_VENDOR_ID and device.product_id == EPSON_PRODUCT_ID

    def sign(self, device: DeviceInfo, payload: dict) -> str:
        self._wait()
        return f"TSE-{device.serial_number}-{compact_stamp(utcnow())}-{secrets.token_hex(4).upper()}"


def _decode(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError as exc:
        raise FiscalDeviceError(f"Gateway returned a non-JSON response ({response.status_code})") from exc
    if not isinstance(body, dict):
        raise FiscalDeviceError("Gateway response is not a JSON object")
    return body


class NetworkFiscalDevice(FiscalDevice):
    """
    TSE reachable through an HTTP signing gateway.

    Every call has a timeout; transport errors and 5xx responses are retried
    with exponential backoff, up to `attempts` tries in total.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, attempts: int = 3,
                 backoff_base: float = 0.2, transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base
        self.transport = transport

    def _post(self, path: str, body: dict) -> dict:
        last_error = None
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                for attempt in range(self.attempts):
                    try:
                        response = client.post(path, json=body)
                        if response.status_code >= 500:
                            raise FiscalDeviceError(f"Gateway returned {response.status_code}")
                        response.raise_for_status()
                    except httpx.HTTPStatusError as exc:
                        raise FiscalDeviceError(f"Gateway rejected request: {exc.response.status_code}") from exc
                    except (httpx.TransportError, FiscalDeviceError) as exc:
                        last_error = exc
                        if attempt < self.attempts - 1:
                            time.sleep(self.backoff_base * (2 ** attempt))
                    else:
                        return _decode(response)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FiscalDeviceError(f"TSE gateway request failed: {exc}") from exc
        raise FiscalDeviceError(f"TSE gateway unreachable after {self.attempts} attempts: {last_error}")

    def handshake(self, device: DeviceInfo) -> bool:
        try:
            data = self._post("/handshake", {
                "serialNumber": device.serial_number,
                "vendorId": device.vendor_id,
                "productId": device.product_id,
            })
        except FiscalDeviceError:
            return False
        return bool(data.get("connected"))

    def sign(self, device: DeviceInfo, payload: dict) -> str:
        data = self._post("/sign", {
            "serialNumber": device.serial_number,
            "kassenId": device.kassen_id,
            "payload": payload,
        })
        signature = data.get("signature")
        if not signature:
            raise FiscalDeviceError("Gateway response did not contain a signature")
        return signature


def build_fiscal_device(config) -> FiscalDevice:
    """Pick the transport from FISCAL_DEVICE ("simulated" or "network")."""
    kind = str(config.get("FISCAL_DEVICE", "simulated")).lower()
    if kind == "network":
        return NetworkFiscalDevice(
            config["TSE_GATEWAY_URL"],
            timeout=config.get("TSE_TIMEOUT_SECONDS", 5.0),
            attempts=config.get("TSE_RETRY_ATTEMPTS", 3),
        )
    if kind != "simulated":
        raise ValueError(f"Unknown FISCAL_DEVICE: {kind}")
    return SimulatedFiscalDevice(latency_ms=config.get("TSE_SIMULATED_LATENCY_MS", 0))

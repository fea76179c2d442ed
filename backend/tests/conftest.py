"""
Pytest fixtures for Kasse backend tests.

Every test gets a fresh in-memory database, the default roles, and fake
TSE / FinanzOnline transports in app.extensions so no hardware or network
is touched.
"""

import secrets

import pytest

from kasse import create_app
from kasse.extensions import db
from kasse.models import CompanySettings, Product
from kasse.models.catalog import TAX_STANDARD, TAX_REDUCED
from kasse.services import auth_service, session_service, tse_service, invoice_service
from kasse.services.auth_service import (
    ROLE_ADMINISTRATOR, ROLE_MANAGER, ROLE_CASHIER, ROLE_ADMIN,
)
from kasse.services.fiscal_device import (
    FiscalDevice, FiscalDeviceError, EPSON_VENDOR_ID, EPSON_PRODUCT_ID,
)
from kasse.services.finanzonline_service import FinanzOnlineClient, FinanzOnlineError


TEST_PASSWORD = "Password123"


class FakeFiscalDevice(FiscalDevice):
    """Deterministic signer; flip the flags to simulate hardware faults."""

    def __init__(self):
        self.handshake_ok = True
        self.fail_sign = False
        self.signed = []

    def handshake(self, device):
        return self.handshake_ok

    def sign(self, device, payload):
        if self.fail_sign:
            raise FiscalDeviceError("device busy")
        self.signed.append(payload)
        return f"TSE-{device.serial_number}-TEST-{len(self.signed):04d}"


class FakeFinanzOnlineClient(FinanzOnlineClient):
    def __init__(self):
        self.fail = False
        self.submitted = []
        self.reachable = True

    def submit(self, config, payload):
        if self.fail:
            raise FinanzOnlineError("FinanzOnline unreachable after 4 attempts: timeout", attempts=4)
        self.submitted.append(payload)
        return {"status": "ACCEPTED", "referenceId": f"FO-TEST-{len(self.submitted)}"}, 1

    def test_connection(self, config):
        return self.reachable


@pytest.fixture(scope='function')
def app():
    """Create application with a fresh in-memory database."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    })
    app.extensions['fiscal_device'] = FakeFiscalDevice()
    app.extensions['finanzonline_client'] = FakeFinanzOnlineClient()

    with app.app_context():
        db.create_all()
        auth_service.create_default_roles()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    return db.session


@pytest.fixture
def fiscal_device(app):
    return app.extensions['fiscal_device']


@pytest.fixture
def fo_client(app):
    return app.extensions['finanzonline_client']


# =============================================================================
# USERS / AUTH
# =============================================================================

def make_user(username: str, role: str):
    return auth_service.create_user(
        username,
        f"{username}@kasse.test",
        TEST_PASSWORD,
        roles=[role],
        rounds=4,
    )


def auth_headers(user) -> dict:
    """Helper to create Authorization headers."""
    _, token = session_service.create_session(user.id, "pytest", "127.0.0.1")
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def administrator(app):
    return make_user("admin", ROLE_ADMINISTRATOR)


@pytest.fixture
def manager(app):
    return make_user("manager", ROLE_MANAGER)


@pytest.fixture
def cashier(app):
    return make_user("kassier", ROLE_CASHIER)


@pytest.fixture
def backoffice(app):
    """User holding only the "Admin" role (distinct from Administrator)."""
    return make_user("wartung", ROLE_ADMIN)


@pytest.fixture
def admin_headers(administrator):
    return auth_headers(administrator)


@pytest.fixture
def manager_headers(manager):
    return auth_headers(manager)


@pytest.fixture
def cashier_headers(cashier):
    return auth_headers(cashier)


@pytest.fixture
def backoffice_headers(backoffice):
    return auth_headers(backoffice)


# =============================================================================
# DOMAIN DATA
# =============================================================================

@pytest.fixture
def company(app):
    settings = CompanySettings(
        company_name="Gasthaus Test GmbH",
        company_tax_number="ATU12345678",
        company_address="Ringstrasse 1, 1010 Wien",
        finanzonline_api_url="https://fo.test/api",
        finanzonline_username="fo-user",
        finanzonline_retry_attempts=3,
    )
    db.session.add(settings)
    db.session.commit()
    return settings


@pytest.fixture
def product(app):
    p = Product(sku="BI-001", name="Bier 0,5l", price_cents=1000, tax_type=TAX_STANDARD)
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def reduced_product(app):
    p = Product(sku="WS-001", name="Wiener Schnitzel", price_cents=1500, tax_type=TAX_REDUCED)
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def make_invoice(company):
    """Factory for DRAFT invoices. Amounts in cents; total defaults to subtotal + 20% VAT."""

    def _make(subtotal_cents=10000, tax_cents=None, **fields):
        if tax_cents is None:
            tax_cents = subtotal_cents // 5
        values = {
            "company_name": "Gasthaus Test GmbH",
            "company_tax_number": "ATU12345678",
            "subtotal_cents": subtotal_cents,
            "tax_cents": tax_cents,
            "total_cents": subtotal_cents + tax_cents,
            "customer_name": "Max Mustermann",
        }
        values.update(fields)
        return invoice_service.create_invoice(values)

    return _make


@pytest.fixture
def tse_device(app):
    device = tse_service.register_device(
        f"TSE-{secrets.token_hex(2).upper()}",
        "KASSE-001",
        vendor_id=EPSON_VENDOR_ID,
        product_id=EPSON_PRODUCT_ID,
    )
    device.finanzonline_enabled = True
    db.session.commit()
    return device


@pytest.fixture
def connected_tse(tse_device):
    return tse_service.connect(tse_device.serial_number)

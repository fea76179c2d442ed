"""
Cart manager tests.

Verifies:
- Quantity bounds (1..999), also after merging lines
- Expired and completed carts are immutable
- Carts are private to their owner
- Checkout produces a DRAFT invoice with per-class VAT
- Concurrent adds of different products both land
"""

import threading
from datetime import timedelta

import pytest

from kasse import create_app
from kasse.extensions import db
from kasse.models import Cart, CartItem, Invoice, Product, RestaurantTable
from kasse.models.carts import CART_ACTIVE, CART_COMPLETED, CART_EXPIRED
from kasse.models.invoices import INVOICE_DRAFT
from kasse.models.tables import TABLE_FREE, TABLE_OCCUPIED
from kasse.services import cart_service, table_service, auth_service
from kasse.time_utils import utcnow
from kasse.validation import NotFoundError, ValidationError


# =============================================================================
# SERVICE
# =============================================================================


class TestCartItems:

    def test_add_item_snapshots_price_and_tax(self, cashier, product):
        cart = cart_service.create_cart(cashier.id, table_number=3)
        item = cart_service.add_item(cart.cart_id, product.id, 2, user_id=cashier.id)

        assert item.quantity == 2
        assert item.unit_price_cents == 1000
        assert item.tax_type == "STANDARD"

        product.price_cents = 2000
        db.session.commit()
        db.session.expire_all()
        assert db.session.get(CartItem, item.id).unit_price_cents == 1000

    def test_same_product_and_notes_merge(self, cashier, product):
        cart = cart_service.create_cart(cashier.id)
        first = cart_service.add_item(cart.cart_id, product.id, 2, user_id=cashier.id)
        second = cart_service.add_item(cart.cart_id, product.id, 3, user_id=cashier.id)

        assert first.id == second.id
        assert second.quantity == 5
        assert db.session.query(CartItem).count() == 1

    def test_different_notes_get_separate_lines(self, cashier, product):
        cart = cart_service.create_cart(cashier.id)
        cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)
        cart_service.add_item(cart.cart_id, product.id, 1, "ohne Schaum", user_id=cashier.id)

        assert db.session.query(CartItem).count() == 2

    @pytest.mark.parametrize("quantity", [0, -1, 1000, 1.5, True, "2"])
    def test_quantity_out_of_range_rejected(self, cashier, product, quantity):
        cart = cart_service.create_cart(cashier.id)
        with pytest.raises(ValidationError):
            cart_service.add_item(cart.cart_id, product.id, quantity, user_id=cashier.id)

    def test_quantity_limit_is_999(self, cashier, product):
        cart = cart_service.create_cart(cashier.id)
        item = cart_service.add_item(cart.cart_id, product.id, 999, user_id=cashier.id)
        assert item.quantity == 999

    def test_merge_over_limit_rejected(self, cashier, product):
        cart = cart_service.create_cart(cashier.id)
        cart_service.add_item(cart.cart_id, product.id, 500, user_id=cashier.id)

        with pytest.raises(ValidationError):
            cart_service.add_item(cart.cart_id, product.id, 500, user_id=cashier.id)

        db.session.rollback()
        assert db.session.query(CartItem).one().quantity == 500

    def test_unknown_product(self, cashier):
        cart = cart_service.create_cart(cashier.id)
        with pytest.raises(NotFoundError):
            cart_service.add_item(cart.cart_id, 9999, 1, user_id=cashier.id)

    def test_deactivated_product_cannot_be_added(self, cashier, product):
        product.deactivate()
        db.session.commit()
        cart = cart_service.create_cart(cashier.id)
        with pytest.raises(NotFoundError):
            cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)

    def test_update_and_remove_item(self, cashier, product):
        cart = cart_service.create_cart(cashier.id)
        item = cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)

        updated = cart_service.update_item(cart.cart_id, item.id, 4, "extra kalt", user_id=cashier.id)
        assert updated.quantity == 4
        assert updated.notes == "extra kalt"

        cart_service.remove_item(cart.cart_id, item.id, user_id=cashier.id)
        assert db.session.query(CartItem).count() == 0

    def test_update_to_zero_rejected(self, cashier, product):
        cart = cart_service.create_cart(cashier.id)
        item = cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)
        with pytest.raises(ValidationError):
            cart_service.update_item(cart.cart_id, item.id, 0, user_id=cashier.id)

    def test_clear_cart_deletes_cart_and_items(self, cashier, product):
        cart = cart_service.create_cart(cashier.id)
        cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)

        cart_service.clear_cart(cart.cart_id, user_id=cashier.id)

        assert db.session.query(Cart).count() == 0
        assert db.session.query(CartItem).count() == 0


class TestCartOwnershipAndLifecycle:

    def test_other_user_cannot_see_cart(self, cashier, manager, product):
        cart = cart_service.create_cart(cashier.id)
        with pytest.raises(NotFoundError):
            cart_service.get_cart(cart.cart_id, manager.id)
        with pytest.raises(NotFoundError):
            cart_service.add_item(cart.cart_id, product.id, 1, user_id=manager.id)

    def test_expired_cart_is_immutable(self, cashier, product):
        cart = cart_service.create_cart(cashier.id)
        cart.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        with pytest.raises(NotFoundError):
            cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)

        db.session.expire_all()
        assert db.session.query(Cart).one().status == CART_EXPIRED
        assert db.session.query(CartItem).count() == 0

        with pytest.raises(NotFoundError):
            cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)

    def test_expire_carts_bulk(self, cashier):
        fresh = cart_service.create_cart(cashier.id)
        stale = cart_service.create_cart(cashier.id)
        stale.expires_at = utcnow() - timedelta(hours=1)
        db.session.commit()

        assert cart_service.expire_carts() == 1

        db.session.expire_all()
        assert db.session.get(Cart, stale.id).status == CART_EXPIRED
        assert db.session.get(Cart, fresh.id).status == CART_ACTIVE

    def test_default_ttl_is_24_hours(self, cashier):
        cart = cart_service.create_cart(cashier.id)
        ttl = cart.expires_at - cart.created_at
        assert timedelta(hours=23, minutes=59) < ttl <= timedelta(hours=24)

    def test_current_cart_is_reused_per_table(self, cashier):
        first = cart_service.get_current_cart(cashier.id, 4)
        second = cart_service.get_current_cart(cashier.id, 4)
        other_table = cart_service.get_current_cart(cashier.id, 5)

        assert first.cart_id == second.cart_id
        assert other_table.cart_id != first.cart_id


class TestCheckout:

    def test_checkout_builds_draft_invoice(self, cashier, company, product, reduced_product):
        cart = cart_service.create_cart(cashier.id, table_number=2)
        cart_service.add_item(cart.cart_id, product.id, 2, user_id=cashier.id)          # 20.00 net, 20%
        cart_service.add_item(cart.cart_id, reduced_product.id, 1, user_id=cashier.id)  # 15.00 net, 10%

        invoice = cart_service.checkout(cart.cart_id, cashier.id)

        assert invoice.status == INVOICE_DRAFT
        assert invoice.subtotal_cents == 3500
        assert invoice.tax_cents == 400 + 150
        assert invoice.total_cents == 4050
        assert invoice.remaining_cents == 4050
        assert invoice.company_name == "Gasthaus Test GmbH"
        assert invoice.cart_id == cart.cart_id
        assert invoice.tax_details["STANDARD"] == {"rate_bps": 2000, "net_cents": 2000, "tax_cents": 400}
        assert invoice.tax_details["REDUCED"] == {"rate_bps": 1000, "net_cents": 1500, "tax_cents": 150}
        assert len(invoice.invoice_items) == 2

        db.session.expire_all()
        assert db.session.query(Cart).one().status == CART_COMPLETED

    def test_completed_cart_is_immutable(self, cashier, company, product):
        cart = cart_service.create_cart(cashier.id)
        cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)
        cart_service.checkout(cart.cart_id, cashier.id)

        with pytest.raises(NotFoundError):
            cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)
        with pytest.raises(NotFoundError):
            cart_service.checkout(cart.cart_id, cashier.id)
        assert db.session.query(Invoice).count() == 1

    def test_empty_cart_cannot_be_checked_out(self, cashier, company):
        cart = cart_service.create_cart(cashier.id)
        with pytest.raises(ValidationError):
            cart_service.checkout(cart.cart_id, cashier.id)


class TestTableStatus:

    def test_table_follows_active_cart(self, cashier, company, product):
        table = table_service.create_table(7)
        assert table.status == TABLE_FREE

        cart = cart_service.create_cart(cashier.id, table_number=7)
        db.session.expire_all()
        assert db.session.get(RestaurantTable, table.id).status == TABLE_OCCUPIED

        cart_service.add_item(cart.cart_id, product.id, 1, user_id=cashier.id)
        cart_service.checkout(cart.cart_id, cashier.id)
        db.session.expire_all()
        assert db.session.get(RestaurantTable, table.id).status == TABLE_FREE


# =============================================================================
# CONCURRENCY
# =============================================================================


def test_concurrent_adds_for_different_products_both_land(tmp_path):
    """Two threads add different products to the same cart at the same time."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'carts.sqlite3'}",
    })

    with app.app_context():
        db.create_all()
        auth_service.create_default_roles()
        user = auth_service.create_user("kellner", "kellner@kasse.test", "Password123", rounds=4)
        beer = Product(name="Bier", price_cents=450)
        wine = Product(name="Wein", price_cents=380)
        db.session.add_all([beer, wine])
        db.session.commit()
        cart = cart_service.create_cart(user.id, table_number=1)
        cart_id, user_id, product_ids = cart.cart_id, user.id, [beer.id, wine.id]

    barrier = threading.Barrier(2)
    errors = []

    def worker(product_id):
        with app.app_context():
            barrier.wait()
            try:
                cart_service.add_item(cart_id, product_id, 1, user_id=user_id)
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(pid,)) for pid in product_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    with app.app_context():
        items = db.session.query(CartItem).all()
        assert sorted(i.product_id for i in items) == sorted(product_ids)
        db.drop_all()


# =============================================================================
# API
# =============================================================================


class TestCartApi:

    def test_cart_flow(self, client, cashier_headers, company, product):
        resp = client.post("/api/cart", json={"tableNumber": 5}, headers=cashier_headers)
        assert resp.status_code == 201
        cart_id = resp.json["cartId"]

        resp = client.post(f"/api/cart/{cart_id}/items",
                           json={"productId": product.id, "quantity": 3}, headers=cashier_headers)
        assert resp.status_code == 201
        assert resp.json["cart"]["total_items"] == 3
        assert resp.json["cart"]["subtotal_cents"] == 3000
        assert resp.json["cart"]["tax_cents"] == 600
        assert resp.json["cart"]["total_cents"] == 3600

        resp = client.post(f"/api/cart/{cart_id}/checkout",
                           json={"customerName": "Familie Huber"}, headers=cashier_headers)
        assert resp.status_code == 201
        assert resp.json["invoice"]["status"] == "DRAFT"
        assert resp.json["invoice"]["customer_name"] == "Familie Huber"
        assert resp.json["invoice"]["total_cents"] == 3600

    def test_quantity_1000_returns_400(self, client, cashier_headers, product):
        cart_id = client.post("/api/cart", json={}, headers=cashier_headers).json["cartId"]
        resp = client.post(f"/api/cart/{cart_id}/items",
                           json={"productId": product.id, "quantity": 1000}, headers=cashier_headers)
        assert resp.status_code == 400

    def test_other_users_cart_returns_404(self, client, cashier_headers, manager_headers):
        cart_id = client.post("/api/cart", json={}, headers=cashier_headers).json["cartId"]
        resp = client.get(f"/api/cart/{cart_id}", headers=manager_headers)
        assert resp.status_code == 404

    def test_current_cart_requires_table_number(self, client, cashier_headers):
        resp = client.get("/api/cart/current", headers=cashier_headers)
        assert resp.status_code == 400

        resp = client.get("/api/cart/current?tableNumber=9", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["cart"]["table_number"] == 9

from datetime import datetime

import pytest

import cart as carts
import catalog
import coupons
import orders
from errors import Forbidden, NotFound, Rejected
from schemas import Address


@pytest.fixture
def home():
    return Address(street="12 MG Road", city="Bengaluru", state="KA", zip_code="560001", phone="9999999999")


def checkout(db, home, user_id="u1", **kwargs):
    return orders.create_order(db, user_id, home, home, "cod", **kwargs)


def test_next_order_number_restarts_daily(db):
    day = datetime(2026, 3, 15, 9, 30)
    assert orders.next_order_number(db, day) == "FL2603150001"
    assert orders.next_order_number(db, day) == "FL2603150002"
    assert orders.next_order_number(db, datetime(2026, 3, 16)) == "FL2603160001"


@pytest.mark.parametrize("method,shipping", [("standard", 100), ("express", 200), ("overnight", 500)])
def test_compute_totals(method, shipping):
    totals = orders.compute_totals(1000, 50, method)
    assert totals["tax"] == 180
    assert totals["shipping_cost"] == shipping
    assert totals["total"] == 1000 + 180 + shipping - 50


def test_checkout_builds_order_and_takes_stock(db, home, make_product, make_coupon):
    a = make_product(name="Wallet", price=100, stock=5, sku="W-1", images=["w.jpg"])
    b = make_product(name="Perfume", price=50, stock=3)
    make_coupon(code="FLAT20", type="fixed", value=20)
    carts.add_to_cart(db, "u1", a.id, 2)
    carts.add_to_cart(db, "u1", b.id, 1)
    carts.apply_coupon_to_cart(db, "u1", "FLAT20")

    order = checkout(db, home, shipping_method="express", notes="ring the bell")

    assert order.id
    assert order.order_number.startswith("FL") and order.order_number.endswith("0001")
    assert order.subtotal == 250
    assert order.tax == 45
    assert order.shipping_cost == 200
    assert order.discount == 20
    assert order.total == 475
    assert order.currency == "INR"
    assert order.coupon.code == "FLAT20"
    assert [h.status for h in order.status_history] == ["pending"]
    assert order.items[0].name == "Wallet"
    assert order.items[0].sku == "W-1" and order.items[0].image == "w.jpg"

    assert catalog.get_product(db, a.id).stock == 3
    assert catalog.get_product(db, a.id).sold_count == 2
    assert catalog.get_product(db, b.id).stock == 2
    assert carts.get_cart(db, "u1").items == []
    assert carts.get_cart(db, "u1").coupon is None

    ledger = coupons.get_coupon_by_code(db, "FLAT20")
    assert ledger.used_count == 1
    assert ledger.used_by[0].order_id == order.id


def test_order_numbers_increase(db, home, make_product):
    product = make_product(stock=10)
    carts.add_to_cart(db, "u1", product.id, 1)
    first = checkout(db, home)
    carts.add_to_cart(db, "u1", product.id, 1)
    second = checkout(db, home)
    assert int(second.order_number[-4:]) == int(first.order_number[-4:]) + 1


def test_empty_cart_is_rejected(db, home):
    with pytest.raises(Rejected, match="Cart is empty"):
        checkout(db, home)


def test_insufficient_stock_leaves_everything_untouched(db, home, make_product):
    a = make_product(name="Wallet", stock=5)
    b = make_product(name="Perfume", stock=2)
    carts.add_to_cart(db, "u1", a.id, 2)
    carts.add_to_cart(db, "u1", b.id, 2)
    db["product"].update_one({"name": "Perfume"}, {"$set": {"stock": 1}})

    with pytest.raises(Rejected, match="Insufficient stock for Perfume"):
        checkout(db, home)

    assert db["order"].count_documents({}) == 0
    assert catalog.get_product(db, a.id).stock == 5
    assert catalog.get_product(db, b.id).stock == 1
    assert len(carts.get_cart(db, "u1").items) == 2


def test_failed_reservation_releases_earlier_ones(db, home, make_product, monkeypatch):
    a = make_product(name="Wallet", stock=5)
    b = make_product(name="Perfume", stock=5)
    carts.add_to_cart(db, "u1", a.id, 2)
    carts.add_to_cart(db, "u1", b.id, 1)

    real_reserve = catalog.reserve_stock

    def racing_reserve(db_, product_id, quantity):
        # Another checkout drains the second product between the check and the reservation.
        if product_id == b.id:
            db_["product"].update_one({"name": "Perfume"}, {"$set": {"stock": 0}})
        return real_reserve(db_, product_id, quantity)

    monkeypatch.setattr(catalog, "reserve_stock", racing_reserve)

    with pytest.raises(Rejected, match="Insufficient stock"):
        checkout(db, home)

    wallet = catalog.get_product(db, a.id)
    assert (wallet.stock, wallet.sold_count) == (5, 0)
    assert db["order"].count_documents({}) == 0


def test_failed_insert_releases_stock(db, home, make_product, monkeypatch):
    product = make_product(stock=4)
    carts.add_to_cart(db, "u1", product.id, 3)

    def broken_counter(db_, now=None):
        raise RuntimeError("counter unavailable")

    monkeypatch.setattr(orders, "next_order_number", broken_counter)
    with pytest.raises(RuntimeError):
        checkout(db, home)
    assert catalog.get_product(db, product.id).stock == 4
    assert len(carts.get_cart(db, "u1").items) == 1


def test_cancel_pending_restores_stock_once(db, home, make_product):
    product = make_product(stock=5)
    carts.add_to_cart(db, "u1", product.id, 2)
    order = checkout(db, home)

    cancelled = orders.cancel_order(db, order.id, "u1")
    assert cancelled.order_status == "cancelled"
    assert cancelled.status_history[-1].status == "cancelled"
    restored = catalog.get_product(db, product.id)
    assert (restored.stock, restored.sold_count) == (5, 0)

    with pytest.raises(Rejected, match="cannot be cancelled"):
        orders.cancel_order(db, order.id, "u1")
    assert catalog.get_product(db, product.id).stock == 5


def test_cancel_shipped_is_rejected(db, home, make_product):
    product = make_product(stock=5)
    carts.add_to_cart(db, "u1", product.id, 1)
    order = checkout(db, home)
    orders.update_status(db, order.id, "shipped", "Left warehouse", "admin1")

    with pytest.raises(Rejected):
        orders.cancel_order(db, order.id, "u1")
    assert catalog.get_product(db, product.id).stock == 4


def test_cancel_by_another_user_is_forbidden(db, home, make_product):
    product = make_product()
    carts.add_to_cart(db, "u1", product.id, 1)
    order = checkout(db, home)
    with pytest.raises(Forbidden):
        orders.cancel_order(db, order.id, "u2")
    with pytest.raises(Forbidden):
        orders.get_order_for_user(db, order.id, "u2")
    assert orders.get_order_for_user(db, order.id, "u2", is_admin=True).id == order.id


def test_update_status_to_delivered(db, home, make_product):
    product = make_product()
    carts.add_to_cart(db, "u1", product.id, 1)
    order = checkout(db, home)

    delivered = orders.update_status(db, order.id, "delivered", "Signed by customer", "admin1")
    assert delivered.order_status == "delivered"
    assert delivered.delivered_at is not None
    entry = delivered.status_history[-1]
    assert (entry.status, entry.note, entry.updated_by) == ("delivered", "Signed by customer", "admin1")


def test_unknown_order_not_found(db):
    with pytest.raises(NotFound):
        orders.get_order(db, "not-an-id")
    with pytest.raises(NotFound):
        orders.update_status(db, "5f0000000000000000000000", "shipped")


def test_list_and_stats(db, home, make_product):
    product = make_product(price=100, stock=20)
    for _ in range(3):
        carts.add_to_cart(db, "u1", product.id, 1)
        checkout(db, home)
    carts.add_to_cart(db, "u2", product.id, 1)
    other = checkout(db, home, user_id="u2")

    first = orders.list_orders(db, "u1")[0][0]
    orders.update_status(db, first.id, "delivered")

    items, pagination = orders.list_orders(db, "u1", limit=2)
    assert len(items) == 2
    assert pagination.total == 3 and pagination.has_next_page

    delivered, _ = orders.list_orders(db, status="delivered")
    assert [o.id for o in delivered] == [first.id]

    stats = orders.get_order_stats(db, "u1")
    assert stats.total_orders == 3
    assert stats.pending_orders == 2
    assert stats.completed_orders == 1
    # 100 + 18 tax + 100 standard shipping
    assert stats.total_revenue == 654
    assert stats.average_order_value == 218

    assert orders.get_order_stats(db).total_orders == 4
    assert orders.get_order_stats(db, "nobody").total_orders == 0
    assert other.user_id == "u2"


def test_checkout_recomputes_a_stale_coupon_discount(db, home, make_product, make_coupon):
    big = make_product(name="Watch", price=1000, stock=5)
    small = make_product(name="Keyring", price=10, stock=5)
    make_coupon(code="BIG", type="fixed", value=1000)
    carts.add_to_cart(db, "u1", big.id, 1)
    carts.apply_coupon_to_cart(db, "u1", "BIG")
    carts.update_cart_item(db, "u1", big.id, 0)
    carts.add_to_cart(db, "u1", small.id, 1)

    summary = carts.summarize(carts.get_cart(db, "u1"))
    assert (summary.subtotal, summary.discount, summary.total) == (10, 10, 0)

    order = checkout(db, home)
    assert order.discount == 10
    assert order.coupon.discount_amount == 10
    assert order.total == pytest.approx(101.8)
    assert order.total >= 0


def test_checkout_rejects_coupon_no_longer_met(db, home, make_product, make_coupon):
    a = make_product(name="Wallet", price=400, stock=5)
    b = make_product(name="Belt", price=200, stock=5)
    make_coupon(code="MIN500", min_order_amount=500)
    carts.add_to_cart(db, "u1", a.id, 1)
    carts.add_to_cart(db, "u1", b.id, 1)
    carts.apply_coupon_to_cart(db, "u1", "MIN500")
    carts.remove_from_cart(db, "u1", b.id)

    with pytest.raises(Rejected, match="Minimum order amount"):
        checkout(db, home)
    assert db["order"].count_documents({}) == 0
    assert catalog.get_product(db, a.id).stock == 5


def test_coupon_use_limit_holds_across_shoppers(db, home, make_product, make_coupon):
    product = make_product(stock=10)
    make_coupon(code="ONE", max_uses=1)
    for user in ("u1", "u2"):
        carts.add_to_cart(db, user, product.id, 1)
        carts.apply_coupon_to_cart(db, user, "ONE")

    checkout(db, home, user_id="u1")
    with pytest.raises(Rejected, match="usage limit"):
        checkout(db, home, user_id="u2")

    stored = coupons.get_coupon_by_code(db, "ONE")
    assert stored.used_count == 1
    assert db["order"].count_documents({}) == 1
    assert catalog.get_product(db, product.id).stock == 9
    assert len(carts.get_cart(db, "u2").items) == 1


def test_coupon_lost_at_claim_releases_stock(db, home, make_product, make_coupon, monkeypatch):
    product = make_product(stock=10)
    make_coupon(code="ONE", max_uses=1)
    carts.add_to_cart(db, "u2", product.id, 2)
    carts.apply_coupon_to_cart(db, "u2", "ONE")

    real_use = coupons.use_coupon

    def someone_else_first(db_, code, user_id, order_id, now=None):
        # Another shopper takes the last use between the cart check and the claim.
        real_use(db_, code, "u1", "other-order", now)
        return real_use(db_, code, user_id, order_id, now)

    monkeypatch.setattr(coupons, "use_coupon", someone_else_first)
    with pytest.raises(Rejected, match="usage limit"):
        checkout(db, home, user_id="u2")

    restored = catalog.get_product(db, product.id)
    assert (restored.stock, restored.sold_count) == (10, 0)
    assert db["order"].count_documents({}) == 0
    assert [u.user_id for u in coupons.get_coupon_by_code(db, "ONE").used_by] == ["u1"]


def test_failed_insert_gives_back_coupon_use(db, home, make_product, make_coupon, monkeypatch):
    product = make_product(stock=4)
    make_coupon(code="ONE", max_uses=1)
    carts.add_to_cart(db, "u1", product.id, 1)
    carts.apply_coupon_to_cart(db, "u1", "ONE")

    def broken_counter(db_, now=None):
        raise RuntimeError("counter unavailable")

    monkeypatch.setattr(orders, "next_order_number", broken_counter)
    with pytest.raises(RuntimeError):
        checkout(db, home)

    stored = coupons.get_coupon_by_code(db, "ONE")
    assert stored.used_count == 0 and stored.used_by == []
    assert catalog.get_product(db, product.id).stock == 4

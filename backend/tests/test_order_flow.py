import pytest

from app.config import settings
from app.models.cart import Cart
from app.models.enums import OrderStatus, PromocodeType
from app.models.order import Order, OrderItem
from app.models.product import ProductSku
from app.models.promocode import Promocode
from app.services.cart_service import CartService
from app.services.order_service import OrderNotFound, OrderService, OrderServiceException

from conftest import ORDER_DATA

USER = "buyer-1"
HEADERS = {"X-User-Id": USER}


def _stock(db, sku_id):
    db.expire_all()
    return db.get(ProductSku, sku_id).quantity


def test_checkout_with_percent_promocode(db, make_sku, make_promocode, fill_cart):
    sku = make_sku(price=10000, quantity=20)
    pid = make_promocode(code="SAVE10", discount_value=10)
    cart_id = fill_cart(USER, [(sku, 1)], promocode_id=pid)

    number = OrderService(db).create_order(USER, ORDER_DATA)

    order = db.query(Order).filter(Order.number == number).one()
    assert order.status == OrderStatus.PENDING
    assert order.total == 9000
    assert order.promocode_id == pid
    assert order.billing_address_street == "Tverskaya"
    assert order.delivery_address_street == "Arbat"
    assert [(i.product_sku_id, i.quantity, i.price) for i in order.items] == [(sku, 1, 10000)]
    assert _stock(db, sku) == 19
    assert db.get(Promocode, pid).usage_count == 1
    assert db.get(Cart, cart_id).promocode_id is None


def test_line_quantity_capped_at_stock(db, make_sku, fill_cart):
    sku = make_sku(price=1000, quantity=20)
    fill_cart(USER, [(sku, 25)])

    number = OrderService(db).create_order(USER, ORDER_DATA)

    order = db.query(Order).filter(Order.number == number).one()
    assert order.items[0].quantity == 20
    assert order.total == 20000
    assert _stock(db, sku) == 0


def test_out_of_stock_lines_are_skipped(db, make_sku, fill_cart):
    ok = make_sku(price=1000, quantity=3)
    empty = make_sku(price=5000, quantity=0)
    fill_cart(USER, [(ok, 1), (empty, 2)])

    number = OrderService(db).create_order(USER, ORDER_DATA)
    order = db.query(Order).filter(Order.number == number).one()
    assert [i.product_sku_id for i in order.items] == [ok]


def test_empty_cart_is_rejected(db, make_sku, fill_cart):
    fill_cart(USER, [(make_sku(quantity=0), 2)])
    with pytest.raises(OrderServiceException, match="Your cart is empty or all items are out of stock"):
        OrderService(db).create_order(USER, ORDER_DATA)
    assert db.query(Order).count() == 0


def test_pending_cap(db, make_sku, fill_cart, monkeypatch):
    monkeypatch.setattr(settings, "MAX_PENDING_ORDERS_PER_USER", 2)
    sku = make_sku(quantity=10)
    fill_cart(USER, [(sku, 1)])
    svc = OrderService(db)
    svc.create_order(USER, ORDER_DATA)
    svc.create_order(USER, ORDER_DATA)

    with pytest.raises(OrderServiceException) as exc:
        svc.create_order(USER, ORDER_DATA)
    assert str(exc.value) == (
        "You have reached the maximum number of pending orders (2). "
        "Please complete or cancel existing orders before creating new ones."
    )
    assert db.query(Order).count() == 2
    assert _stock(db, sku) == 8


def test_order_in_foreign_currency(db, make_sku, fill_cart):
    sku = make_sku(price=10000, quantity=5)
    fill_cart(USER, [(sku, 2)])

    number = OrderService(db).create_order(USER, dict(ORDER_DATA, currency="USD"))
    order = db.query(Order).filter(Order.number == number).one()
    assert order.currency.value == "USD"
    assert order.items[0].price == 125
    assert order.total == 250


def test_lost_stock_race_rolls_back(db, make_sku, make_promocode, fill_cart, monkeypatch):
    sku = make_sku(price=1000, quantity=5)
    pid = make_promocode(code="RACE")
    cart_id = fill_cart(USER, [(sku, 5)], promocode_id=pid)

    real_get_cart = CartService.get_cart

    def stale_snapshot(self, user_id, currency_to=None):
        view = real_get_cart(self, user_id, currency_to)
        # another checkout took 3 units after this cart was priced
        self.db.query(ProductSku).filter(ProductSku.id == sku).update({"quantity": 2})
        return view

    monkeypatch.setattr(CartService, "get_cart", stale_snapshot)
    with pytest.raises(OrderServiceException, match="Not enough stock available"):
        OrderService(db).create_order(USER, ORDER_DATA)

    # nothing of the failed checkout survives, including the concurrent write
    # issued inside the same transaction
    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0
    assert _stock(db, sku) == 5
    assert db.get(Promocode, pid).usage_count == 0
    assert db.get(Cart, cart_id).promocode_id == pid


def test_promocode_usage_race_rolls_back(db, make_sku, make_promocode, fill_cart, monkeypatch):
    sku = make_sku(price=1000, quantity=5)
    pid = make_promocode(code="LAST", usage_limit=1)
    fill_cart(USER, [(sku, 1)], promocode_id=pid)

    real_get_cart = CartService.get_cart

    def stale_snapshot(self, user_id, currency_to=None):
        view = real_get_cart(self, user_id, currency_to)
        self.db.query(Promocode).filter(Promocode.id == pid).update({"usage_count": 1})
        return view

    monkeypatch.setattr(CartService, "get_cart", stale_snapshot)
    with pytest.raises(OrderServiceException, match="Promocode is inactive"):
        OrderService(db).create_order(USER, ORDER_DATA)
    assert _stock(db, sku) == 5


def test_order_views_and_status(db, make_sku, make_promocode, fill_cart):
    sku = make_sku(price=10000, quantity=20)
    pid = make_promocode(code="FLAT", type=PromocodeType.FIXED, discount_value=2500)
    fill_cart(USER, [(sku, 2)], promocode_id=pid)
    svc = OrderService(db)
    number = svc.create_order(USER, ORDER_DATA)

    view = svc.get_order(number, user_id=USER)
    assert view["total"] == 175
    assert view["order_items"][0]["name"] == "Oak table"
    assert view["promocode"]["code"] == "FLAT"
    assert view["payment_timeout_minutes"] == 30
    with pytest.raises(OrderNotFound):
        svc.get_order(number, user_id="someone-else")

    listing = svc.list_orders(user_id=USER)
    assert listing["page_count"] == 1
    assert listing["orders"][0]["order_item_count"] == 1
    assert svc.list_orders(search="ivan@")["orders"][0]["number"] == number

    with pytest.raises(OrderServiceException, match="from pending to shipped"):
        svc.advance_status(number, OrderStatus.SHIPPED)
    db.query(Order).filter(Order.number == number).update({"status": OrderStatus.PAID})
    db.commit()
    assert svc.advance_status(number, "shipped").status == OrderStatus.SHIPPED
    assert svc.advance_status(number, "delivered").status == OrderStatus.DELIVERED
    with pytest.raises(OrderServiceException):
        svc.advance_status(number, "cancelled")


def test_order_api(client, make_sku, fill_cart):
    sku = make_sku(price=10000, quantity=4)
    fill_cart(USER, [(sku, 1)])

    r = client.post("/api/orders", json=ORDER_DATA, headers=HEADERS)
    assert r.status_code == 201
    number = r.json()["order_number"]

    r = client.get(f"/api/orders/{number}", headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["status"] == "pending"
    assert r.json()["currency"] == "RUB"

    assert client.get(f"/api/orders/{number}", headers={"X-User-Id": "other"}).status_code == 404
    assert client.get("/api/orders", headers=HEADERS).json()["orders"][0]["number"] == number

    r = client.post("/api/orders", json=ORDER_DATA, headers=HEADERS)
    assert r.status_code == 201  # cart lines stay after checkout

    r = client.post("/api/orders", json=dict(ORDER_DATA, email="not-an-email"), headers=HEADERS)
    assert r.status_code == 422

    r = client.post(f"/api/admin/orders/{number}/status", json={"status": "shipped"})
    assert r.status_code == 400

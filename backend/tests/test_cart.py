from datetime import timedelta
from decimal import Decimal

import pytest

from app.config import settings
from app.models.cart import Cart
from app.models.enums import Currency, PromocodeType
from app.models.product import Product
from app.services.cart_service import CartNotFound, CartService, CartServiceException
from app.services.exchange_rates import rate_cache
from app.services.price_service import PriceServiceUnavailable
from app.utils.timeutils import utcnow

USER = "user-1"
HEADERS = {"X-User-Id": USER}


def test_total_counts_only_available_stock(db, make_sku, fill_cart):
    plenty = make_sku(price=10000, quantity=20)
    scarce = make_sku(price=5000, sale_price=4000, quantity=2)
    gone = make_sku(price=3000, quantity=0)
    fill_cart(USER, [(plenty, 1), (scarce, 5), (gone, 3)])

    cart = CartService(db).get_cart(USER)
    assert cart["currency"] == Currency.RUB
    # 1 * 10000 + 2 * 4000 + 0
    assert cart["total_minor"] == 18000
    assert cart["total_price"] == Decimal("180")
    lines = {it["product_sku_id"]: it for it in cart["items"]}
    assert lines[scarce]["purchasable_quantity"] == 2
    assert lines[scarce]["unit_price_minor"] == 4000
    assert lines[scarce]["sale_price"] == Decimal("40")
    assert lines[gone]["purchasable_quantity"] == 0
    assert lines[plenty]["product"]["name"] == "Oak table"
    assert lines[plenty]["images"][0]["image_url"].startswith("https://img.local/")


def test_unknown_user_gets_empty_cart(db):
    cart = CartService(db).get_cart("nobody")
    assert cart["items"] == []
    assert cart["total_minor"] == 0


def test_soft_deleted_products_are_hidden(db, make_sku, fill_cart):
    keep = make_sku()
    hidden = make_sku(name="Retired chair")
    fill_cart(USER, [(keep, 1), (hidden, 1)])
    db.query(Product).filter(Product.name == "Retired chair").update({"is_deleted": True})
    db.commit()

    cart = CartService(db).get_cart(USER)
    assert [it["product_sku_id"] for it in cart["items"]] == [keep]


def test_converts_each_unit_price(db, make_sku, fill_cart, make_promocode):
    sku = make_sku(price=10000, quantity=5)
    pid = make_promocode(code="FIX80", type=PromocodeType.FIXED, discount_value=8000)
    fill_cart(USER, [(sku, 3)], promocode_id=pid)

    cart = CartService(db).get_cart(USER, "USD")
    assert cart["items"][0]["unit_price_minor"] == 125
    # 3 * 125 - 100
    assert cart["total_minor"] == 275
    assert cart["promocode"]["discount_value"] == Decimal("1")


def test_conversion_without_rates_fails(db, make_sku, fill_cart, monkeypatch):
    fill_cart(USER, [(make_sku(), 1)])
    rate_cache.invalidate()
    monkeypatch.setattr(rate_cache, "_fetcher", lambda: None)
    svc = CartService(db)
    with pytest.raises(PriceServiceUnavailable):
        svc.get_cart(USER, "EUR")
    # base currency needs no rates
    assert svc.get_cart(USER)["total_minor"] == 10000


def test_invalid_promocode_is_ignored_but_kept(db, make_sku, fill_cart, make_promocode):
    pid = make_promocode(code="OLD", valid_to=utcnow() - timedelta(minutes=1), valid_from=utcnow() - timedelta(days=2))
    cart_id = fill_cart(USER, [(make_sku(price=10000), 1)], promocode_id=pid)

    cart = CartService(db).get_cart(USER)
    assert cart["promocode"] is None
    assert cart["total_minor"] == 10000
    assert db.get(Cart, cart_id).promocode_id == pid


def test_add_item_upserts_and_limits(db, make_sku, monkeypatch):
    svc = CartService(db)
    svc.create_if_not_exists(USER)
    svc.create_if_not_exists(USER)
    a = make_sku()
    svc.add_item(USER, a, 2)
    svc.add_item(USER, a, 4)
    cart = svc.get_cart(USER)
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 4

    monkeypatch.setattr(settings, "MAX_CART_ITEM_COUNT", 1)
    with pytest.raises(CartServiceException, match="Cart item limit exceeded"):
        svc.add_item(USER, make_sku(), 1)
    # updating an existing line is still allowed at the limit
    svc.add_item(USER, a, 1)


def test_cart_item_errors(db, make_sku):
    svc = CartService(db)
    with pytest.raises(CartNotFound):
        svc.add_item(USER, make_sku(), 1)
    svc.create_if_not_exists(USER)
    with pytest.raises(Exception, match="Product sku not found"):
        svc.add_item(USER, 9999, 1)
    with pytest.raises(Exception, match="Cart item not found"):
        svc.update_item(USER, 9999, 1)
    with pytest.raises(CartServiceException):
        svc.add_item(USER, make_sku(), 0)


def test_add_promocode_rules(db, make_sku, make_promocode):
    svc = CartService(db)
    svc.create_if_not_exists(USER)
    make_promocode(code="FULL", usage_limit=1, usage_count=1)
    pid = make_promocode(code="OK10")

    with pytest.raises(CartServiceException, match="Cart doesn't have a promocode"):
        svc.remove_promocode(USER)
    with pytest.raises(Exception, match="Promocode is inactive"):
        svc.add_promocode(USER, "FULL")

    assert svc.add_promocode(USER, "OK10").id == pid
    assert svc.get_user_cart(USER).promocode_id == pid
    svc.remove_promocode(USER)
    assert svc.get_user_cart(USER).promocode_id is None


# --- HTTP ---


def test_cart_api_flow(client, make_sku, make_promocode):
    sku = make_sku(price=10000, quantity=20)
    make_promocode(code="SAVE10", discount_value=10)

    r = client.post("/api/cart/items", json={"product_sku_id": sku, "quantity": 2}, headers=HEADERS)
    assert r.status_code == 201
    item_id = r.json()["item_id"]

    r = client.post("/api/cart/promocode", json={"code": "SAVE10"}, headers=HEADERS)
    assert r.status_code == 200

    r = client.get("/api/cart", headers=HEADERS)
    body = r.json()
    assert body["total_minor"] == 18000
    assert body["promocode"]["code"] == "SAVE10"

    r = client.patch(f"/api/cart/items/{item_id}", json={"quantity": 1}, headers=HEADERS)
    assert r.json()["quantity"] == 1

    r = client.get("/api/cart", params={"currency": "USD"}, headers=HEADERS)
    assert r.json()["currency"] == "USD"
    assert r.json()["total_minor"] == 112  # 125 - 13, the 12.5 discount rounds half up

    assert client.delete(f"/api/cart/items/{item_id}", headers=HEADERS).status_code == 200
    assert client.get("/api/cart", headers=HEADERS).json()["items"] == []


def test_cart_api_errors(client):
    assert client.get("/api/cart").status_code == 401
    r = client.post("/api/cart/items", json={"product_sku_id": 12345, "quantity": 1}, headers=HEADERS)
    assert r.status_code == 404
    assert r.json()["detail"] == "Product sku not found"
    r = client.post("/api/cart/promocode", json={"code": "MISSING"}, headers=HEADERS)
    assert r.status_code == 404
    r = client.delete("/api/cart/promocode", headers=HEADERS)
    assert r.status_code == 400

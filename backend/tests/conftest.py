import os

# must be set before app modules read settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_shop.db")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["PAYMENT_MOCK_DELAY_MS"] = "0"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.adapters import mock_payment
from app.db import SessionLocal, init_db
from app.main import app
from app.models.cart import Cart
from app.models.cart_item import CartItem
from app.models.enums import Currency, PromocodeType
from app.models.promocode import Promocode
from app.repositories.product_repo import ProductRepository
from app.services.exchange_rates import rate_cache
from app.utils.timeutils import utcnow

# units of each currency per 1 RUB
RATES = {"RUB": 1, "USD": 0.0125, "EUR": 0.01}

ORDER_DATA = {
    "name": "Ivan Petrov",
    "email": "ivan@example.com",
    "phone_number": "+79990001122",
    "billing_address": {"city": "Moscow", "street": "Tverskaya", "home": "1", "apartment": "10"},
    "delivery_address": {"city": "Moscow", "street": "Arbat", "home": "5", "apartment": "2"},
}


@pytest.fixture(autouse=True)
def fresh_db():
    init_db(reset=True)
    rate_cache.set(RATES)
    mock_payment.gateway.reset()
    yield
    rate_cache.invalidate()


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_sku(db):
    counter = {"n": 0}

    def _make(price=10000, quantity=20, sale_price=None, currency=Currency.RUB, name="Oak table"):
        counter["n"] += 1
        repo = ProductRepository(db)
        product = repo.create_product(name=name, short_description=f"{name} description")
        sku = repo.create_sku(
            product,
            sku=f"SKU-{counter['n']:03d}",
            price=price,
            quantity=quantity,
            sale_price=sale_price,
            currency=currency,
            images=[{"image_id": f"img-{counter['n']}", "image_url": f"https://img.local/{counter['n']}.jpg"}],
        )
        db.commit()
        return sku.id

    return _make


@pytest.fixture
def make_promocode(db):
    def _make(
        code="SAVE10",
        type=PromocodeType.PERCENT,
        discount_value=10,
        usage_limit=10,
        usage_count=0,
        valid_from=None,
        valid_to=None,
    ):
        now = utcnow()
        p = Promocode(
            code=code,
            type=type,
            discount_value=discount_value,
            usage_limit=usage_limit,
            usage_count=usage_count,
            valid_from=valid_from or now - timedelta(days=1),
            valid_to=valid_to or now + timedelta(days=1),
        )
        db.add(p)
        db.commit()
        return p.id

    return _make


@pytest.fixture
def fill_cart(db):
    def _fill(user_id, lines, promocode_id=None):
        cart = db.query(Cart).filter(Cart.user_id == user_id).first()
        if not cart:
            cart = Cart(user_id=user_id)
            db.add(cart)
            db.flush()
        for sku_id, qty in lines:
            db.add(CartItem(cart_id=cart.id, product_sku_id=sku_id, quantity=qty))
        cart.promocode_id = promocode_id
        db.commit()
        return cart.id

    return _fill

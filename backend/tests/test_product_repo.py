import pytest

from app.repositories.product_repo import ProductException, ProductRepository
from app.services.errors import BusinessRuleException


def test_sale_price_must_be_below_price(db):
    repo = ProductRepository(db)
    product = repo.create_product(name="Birch chair")
    with pytest.raises(BusinessRuleException, match="Sale price must be less than price"):
        repo.create_sku(product, sku="SKU-CHAIR", price=5000, sale_price=5000)
    with pytest.raises(ProductException):
        repo.create_sku(product, sku="SKU-CHAIR", price=5000, sale_price=6000)

    sku = repo.create_sku(product, sku="SKU-CHAIR", price=5000, sale_price=4500, quantity=3)
    assert sku.sale_price == 4500
    assert ProductException.status_code == 400

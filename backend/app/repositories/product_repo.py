from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from app.models.enums import Currency
from app.models.product import Product, ProductSku, ProductSkuImage
from app.services.errors import BusinessRuleException


class ProductException(BusinessRuleException):
    pass


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_sku(self, product_sku_id: int, include_deleted: bool = False) -> Optional[ProductSku]:
        """
        Return a SKU by id. SKUs of soft-deleted products are hidden unless
        `include_deleted` is set.
        """
        qry = (
            self.db.query(ProductSku)
            .join(Product, Product.id == ProductSku.product_id)
            .filter(ProductSku.id == product_sku_id)
        )
        if not include_deleted:
            qry = qry.filter(Product.is_deleted == False)  # noqa: E712
        return qry.first()

    def get_skus(self, ids: Iterable[int]) -> Dict[int, ProductSku]:
        ids = list(ids)
        if not ids:
            return {}
        rows = (
            self.db.execute(
                select(ProductSku)
                .options(selectinload(ProductSku.images), selectinload(ProductSku.product))
                .where(ProductSku.id.in_(ids))
            )
            .scalars()
            .all()
        )
        return {r.id: r for r in rows}

    def create_product(self, name: str, short_description: Optional[str] = None) -> Product:
        p = Product(name=name, short_description=short_description)
        self.db.add(p)
        self.db.flush()
        return p

    def create_sku(
        self,
        product: Product,
        sku: str,
        price: int,
        quantity: int = 0,
        sale_price: Optional[int] = None,
        currency: Currency = Currency.RUB,
        attributes: Optional[Dict] = None,
        images: Optional[List[Dict]] = None,
    ) -> ProductSku:
        if sale_price is not None and sale_price >= price:
            raise ProductException("Sale price must be less than price")
        s = ProductSku(
            product_id=product.id,
            sku=sku,
            price=price,
            sale_price=sale_price,
            quantity=quantity,
            currency=currency,
            attributes=attributes or {},
        )
        for img in images or []:
            s.images.append(ProductSkuImage(image_id=img["image_id"], image_url=img["image_url"]))
        self.db.add(s)
        self.db.flush()
        return s

    def adjust_stock(self, product_sku_id: int, delta: int) -> None:
        """
        Relative stock update evaluated by the database
        (`quantity = quantity + delta`). A result below zero is rejected by
        the product_sku_quantity_non_negative constraint.
        """
        self.db.execute(
            update(ProductSku)
            .where(ProductSku.id == product_sku_id)
            .values(quantity=ProductSku.quantity + delta)
            .execution_options(synchronize_session=False)
        )

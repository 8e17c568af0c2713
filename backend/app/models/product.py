from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.enums import Currency, value_enum

SKU_QUANTITY_CONSTRAINT = "product_sku_quantity_non_negative"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(256), nullable=False)
    short_description = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    skus = relationship("ProductSku", back_populates="product", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Product id={self.id} name={self.name}>"


class ProductSku(Base):
    __tablename__ = "product_skus"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name=SKU_QUANTITY_CONSTRAINT),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku = Column(String(64), unique=True, index=True, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)  # stock on hand
    currency = Column(value_enum(Currency, "currency"), nullable=False, default=Currency.RUB)
    price = Column(Integer, nullable=False)  # minor units
    sale_price = Column(Integer, nullable=True)  # minor units
    attributes = Column(JSON, nullable=False, default=dict)  # color, width, height, length
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    product = relationship("Product", back_populates="skus")
    images = relationship(
        "ProductSkuImage",
        back_populates="product_sku",
        cascade="all, delete-orphan",
        order_by="ProductSkuImage.id",
    )

    @property
    def effective_price(self) -> int:
        return self.sale_price if self.sale_price is not None else self.price

    def __repr__(self):
        return f"<ProductSku sku={self.sku} quantity={self.quantity}>"


class ProductSkuImage(Base):
    __tablename__ = "product_sku_images"
    __table_args__ = (UniqueConstraint("product_sku_id", "image_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_sku_id = Column(
        Integer, ForeignKey("product_skus.id", ondelete="CASCADE"), nullable=False, index=True
    )
    image_id = Column(String(128), nullable=False)
    image_url = Column(String(512), nullable=False)

    product_sku = relationship("ProductSku", back_populates="images")

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.enums import Currency, OrderStatus, value_enum


def _now():
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    number = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(
        value_enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING
    )
    currency = Column(value_enum(Currency, "currency"), nullable=False)
    total = Column(Integer, nullable=False)  # minor units, order currency
    promocode_id = Column(Integer, ForeignKey("promocodes.id"), nullable=True, index=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone_number = Column(String(32), nullable=False)
    billing_address_city = Column(String(255), nullable=False)
    billing_address_street = Column(String(255), nullable=False)
    billing_address_home = Column(String(64), nullable=False)
    billing_address_apartment = Column(String(64), nullable=False)
    delivery_address_city = Column(String(255), nullable=False)
    delivery_address_street = Column(String(255), nullable=False)
    delivery_address_home = Column(String(64), nullable=False)
    delivery_address_apartment = Column(String(64), nullable=False)

    created_at = Column(DateTime(timezone=True), default=_now, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    promocode = relationship("Promocode")
    payments = relationship("Payment", back_populates="order")


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # no ondelete: a SKU referenced by an order line cannot be deleted
    product_sku_id = Column(Integer, ForeignKey("product_skus.id"), nullable=False, index=True)
    price = Column(Integer, nullable=False)  # unit price, minor units, order currency
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    product_sku = relationship("ProductSku")

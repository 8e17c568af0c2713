import logging
import math
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.config import settings
from app.models.enums import Currency, OrderStatus, PromocodeType
from app.models.order import Order, OrderItem
from app.models.product import SKU_QUANTITY_CONSTRAINT, ProductSku
from app.models.promocode import PROMOCODE_USAGE_CONSTRAINT
from app.repositories.cart_repo import CartRepository
from app.repositories.product_repo import ProductRepository
from app.repositories.promocode_repo import PromocodeRepository
from app.services.cart_service import CartService
from app.services.errors import BusinessRuleException, NotFoundException
from app.services.expiration_service import is_order_expired
from app.services.price_service import PriceService, round_half_up
from app.utils.timeutils import utcnow
from app.utils.transactions import is_constraint_violation, smart_transaction

log = logging.getLogger(__name__)

ADDRESS_FIELDS = ("city", "street", "home", "apartment")

# shipping flow after payment; cancellation only happens from pending
NEXT_STATUS = {
    OrderStatus.PAID: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
}


class OrderServiceException(BusinessRuleException):
    pass


class OrderNotFound(NotFoundException):
    pass


class OrderService:
    def __init__(self, db: Session, price_service: Optional[PriceService] = None):
        self.db = db
        self.prices = price_service or PriceService()
        self.carts = CartService(db, price_service=self.prices)
        self.cart_repo = CartRepository(db)
        self.product_repo = ProductRepository(db)
        self.promocode_repo = PromocodeRepository(db)

    is_order_expired = staticmethod(is_order_expired)

    def _gen_order_number(self) -> str:
        return f"ORD-{uuid4().hex[:10].upper()}"

    def count_pending(self, user_id: str) -> int:
        return (
            self.db.query(func.count(Order.id))
            .filter(Order.user_id == user_id, Order.status == OrderStatus.PENDING)
            .scalar()
            or 0
        )

    def create_order(self, user_id: str, data: Dict[str, Any]) -> str:
        """
        Turn the user's cart into a pending order and return its number.

        data: name, email, phone_number, currency, billing_address and
        delivery_address (each a dict of city/street/home/apartment).

        Everything from re-pricing the cart to decrementing stock and
        promocode usage happens in one transaction. Lines are capped at the
        stock seen when pricing; if another checkout drained the SKU in the
        meantime the non-negative stock constraint fails and nothing is kept.
        """
        max_pending = settings.MAX_PENDING_ORDERS_PER_USER
        if self.count_pending(user_id) >= max_pending:
            log.info("Create order failed: pending order limit reached user_id=%s", user_id)
            raise OrderServiceException(
                f"You have reached the maximum number of pending orders ({max_pending}). "
                "Please complete or cancel existing orders before creating new ones."
            )

        currency = Currency(data.get("currency") or self.prices.base_currency)
        try:
            with smart_transaction(self.db):
                cart = self.carts.get_cart(user_id, currency)
                items = [it for it in cart["items"] if it["product_sku_quantity"] > 0]
                if not items:
                    log.info("Create order failed: nothing purchasable user_id=%s", user_id)
                    raise OrderServiceException("Your cart is empty or all items are out of stock")

                promocode = cart["promocode"]
                order = Order(
                    number=self._gen_order_number(),
                    user_id=user_id,
                    status=OrderStatus.PENDING,
                    currency=currency,
                    total=cart["total_minor"],
                    promocode_id=promocode["id"] if promocode else None,
                    name=data["name"],
                    email=data["email"],
                    phone_number=data["phone_number"],
                    **self._address_columns("billing_address", data["billing_address"]),
                    **self._address_columns("delivery_address", data["delivery_address"]),
                )
                self.db.add(order)
                self.db.flush()

                if promocode:
                    user_cart = self.cart_repo.get_by_user(user_id)
                    self.cart_repo.set_promocode(user_cart.id, None)

                for it in items:
                    self.db.add(
                        OrderItem(
                            order_id=order.id,
                            product_sku_id=it["product_sku_id"],
                            price=it["unit_price_minor"],
                            quantity=it["purchasable_quantity"],
                        )
                    )
                self.db.flush()

                for it in items:
                    self.product_repo.adjust_stock(it["product_sku_id"], -it["purchasable_quantity"])
                if promocode:
                    self.promocode_repo.adjust_usage(promocode["id"], 1)
                number = order.number
        except IntegrityError as e:
            if is_constraint_violation(e, SKU_QUANTITY_CONSTRAINT):
                log.info("Create order failed: stock changed during checkout user_id=%s", user_id)
                raise OrderServiceException("Not enough stock available")
            if is_constraint_violation(e, PROMOCODE_USAGE_CONSTRAINT):
                log.info("Create order failed: promocode usage limit reached user_id=%s", user_id)
                raise OrderServiceException("Promocode is inactive")
            raise

        log.info(
            "Order created number=%s user_id=%s items=%d total=%s %s",
            number,
            user_id,
            len(items),
            cart["total_minor"],
            currency.value,
        )
        return number

    @staticmethod
    def _address_columns(prefix: str, address: Dict[str, Any]) -> Dict[str, Any]:
        return {f"{prefix}_{field}": address[field] for field in ADDRESS_FIELDS}

    # --- views ---

    def load(self, order_number: str, user_id: Optional[str] = None) -> Order:
        qry = (
            self.db.query(Order)
            .options(
                selectinload(Order.items)
                .selectinload(OrderItem.product_sku)
                .selectinload(ProductSku.images),
                selectinload(Order.items)
                .selectinload(OrderItem.product_sku)
                .selectinload(ProductSku.product),
                selectinload(Order.promocode),
            )
            .filter(Order.number == order_number)
        )
        if user_id is not None:
            qry = qry.filter(Order.user_id == user_id)
        order = qry.first()
        if not order:
            log.info("Order lookup failed: not found number=%s user_id=%s", order_number, user_id)
            raise OrderNotFound("Order not found")
        return order

    def _promocode_summary(self, order: Order) -> Optional[Dict[str, Any]]:
        promocode = order.promocode
        if not promocode:
            return None
        if promocode.type == PromocodeType.FIXED:
            # fixed discounts are stored in base currency; reading them in a
            # foreign order currency needs rates, so fall back to the base view
            value = self.prices.to_major_units(
                round_half_up(Decimal(promocode.discount_value)), self.prices.base_currency
            )
            currency = self.prices.base_currency
        else:
            value = promocode.discount_value
            currency = None
        return {
            "code": promocode.code,
            "type": promocode.type,
            "discount_value": value,
            "currency": currency,
        }

    def get_order(self, order_number: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        order = self.load(order_number, user_id)
        return {
            "number": order.number,
            "status": order.status,
            "currency": order.currency,
            "total": self.prices.to_major_units(order.total, order.currency),
            "name": order.name,
            "email": order.email,
            "phone_number": order.phone_number,
            "billing_address": {
                f: getattr(order, f"billing_address_{f}") for f in ADDRESS_FIELDS
            },
            "delivery_address": {
                f: getattr(order, f"delivery_address_{f}") for f in ADDRESS_FIELDS
            },
            "created_at": order.created_at,
            "order_items": [
                {
                    "product_sku_id": it.product_sku_id,
                    "name": it.product_sku.product.name,
                    "image": it.product_sku.images[0].image_url if it.product_sku.images else None,
                    "price": self.prices.to_major_units(it.price, order.currency),
                    "quantity": it.quantity,
                }
                for it in order.items
            ],
            "promocode": self._promocode_summary(order),
            "payment_timeout_minutes": settings.PAYMENT_TTL_MINUTES,
        }

    def list_orders(
        self,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """User listing when `user_id` is given, admin listing otherwise (with `search`)."""
        qry = self.db.query(Order)
        if user_id is not None:
            qry = qry.filter(Order.user_id == user_id)
        if status:
            qry = qry.filter(Order.status == OrderStatus(status))
        if search and user_id is None:
            qry = qry.filter(
                or_(
                    Order.number == search,
                    Order.email.ilike(f"%{search}%"),
                    Order.name.ilike(f"%{search}%"),
                )
            )
        total = qry.with_entities(func.count(Order.id)).scalar() or 0
        rows = (
            qry.options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        orders = [
            {
                "number": o.number,
                "user_id": o.user_id,
                "status": o.status,
                "currency": o.currency,
                "total": self.prices.to_major_units(o.total, o.currency),
                "email": o.email,
                "created_at": o.created_at,
                "order_item_count": len(o.items),
            }
            for o in rows
        ]
        return {"orders": orders, "page_count": math.ceil(total / limit) if limit else 0}

    def advance_status(self, order_number: str, status: OrderStatus) -> Order:
        status = OrderStatus(status)
        order = self.load(order_number)
        if NEXT_STATUS.get(order.status) != status:
            log.info(
                "Order status change rejected number=%s from=%s to=%s",
                order_number,
                order.status.value,
                status.value,
            )
            raise OrderServiceException(
                f"Cannot change order status from {order.status.value} to {status.value}"
            )
        with smart_transaction(self.db):
            order.status = status
            order.updated_at = utcnow()
            self.db.flush()
        log.info("Order status changed number=%s status=%s", order_number, status.value)
        return order

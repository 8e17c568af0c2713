import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.cart import Cart
from app.models.cart_item import CartItem
from app.models.enums import Currency, OrderStatus, PromocodeType
from app.models.order import Order
from app.models.promocode import Promocode
from app.repositories.cart_repo import CartRepository
from app.repositories.product_repo import ProductRepository
from app.services.errors import BusinessRuleException, NotFoundException
from app.services.price_service import CurrencyLike, PriceService
from app.services.promocode_service import PromocodeService
from app.utils.transactions import smart_transaction

log = logging.getLogger(__name__)


class CartServiceException(BusinessRuleException):
    pass


class CartNotFound(NotFoundException):
    pass


class CartService:
    def __init__(self, db: Session, price_service: Optional[PriceService] = None):
        self.db = db
        self.cart_repo = CartRepository(db)
        self.product_repo = ProductRepository(db)
        self.prices = price_service or PriceService()
        self.promocodes = PromocodeService(db, price_service=self.prices)

    def create_if_not_exists(self, user_id: str) -> Cart:
        cart = self.cart_repo.get_by_user(user_id)
        if cart:
            return cart
        try:
            with smart_transaction(self.db):
                cart = self.cart_repo.create(user_id)
        except IntegrityError:
            # created concurrently for the same user
            cart = self.cart_repo.get_by_user(user_id)
        return cart

    def get_user_cart(self, user_id: str) -> Cart:
        cart = self.cart_repo.get_by_user(user_id)
        if not cart:
            log.info("Cart lookup failed: cart not found user_id=%s", user_id)
            raise CartNotFound("Cart not found")
        return cart

    def get_cart(self, user_id: str, currency_to: Optional[CurrencyLike] = None) -> Dict[str, Any]:
        """
        Priced view of the user's cart in `currency_to` (base currency when
        omitted).

        Each line counts only up to the SKU's current stock; this is a
        display estimate, nothing is reserved. A promocode that stopped being
        valid after it was attached is ignored here but left on the cart.
        Minor-unit figures (`total_minor`, `unit_price_minor`) sit next to
        the major-unit presentation values for the checkout path.
        """
        target = Currency(currency_to) if currency_to else self.prices.base_currency
        cart = self.cart_repo.get_by_user(user_id)
        items: List[CartItem] = self.cart_repo.live_items(cart) if cart else []

        promocode: Optional[Promocode] = None
        if cart and cart.promocode_id:
            promocode = self.promocodes.get(promocode_id=cart.promocode_id, validate=False)
            if promocode and not self.promocodes.is_valid(promocode).valid:
                log.info(
                    "Cart promocode ignored: no longer valid user_id=%s promocode_id=%s",
                    user_id,
                    promocode.id,
                )
                promocode = None

        needs_rates = any(
            self.prices.needs_conversion(it.product_sku.currency, target) for it in items
        ) or (
            promocode is not None
            and promocode.type == PromocodeType.FIXED
            and self.prices.needs_conversion(self.prices.base_currency, target)
        )
        if needs_rates:
            # fail before pricing anything rather than show unconverted amounts
            self.prices.exchange_rates()

        lines = []
        total_minor = 0
        for it in items:
            sku = it.product_sku
            price = self.prices.convert(sku.price, sku.currency, target)
            sale_price = (
                self.prices.convert(sku.sale_price, sku.currency, target)
                if sku.sale_price is not None
                else None
            )
            unit_price = sale_price if sale_price is not None else price
            purchasable = max(min(it.quantity, sku.quantity), 0)
            total_minor += purchasable * unit_price
            lines.append(
                {
                    "id": it.id,
                    "product_sku_id": sku.id,
                    "sku": sku.sku,
                    "quantity": it.quantity,
                    "product_sku_quantity": sku.quantity,
                    "purchasable_quantity": purchasable,
                    "unit_price_minor": unit_price,
                    "price": self.prices.to_major_units(price, target),
                    "sale_price": (
                        self.prices.to_major_units(sale_price, target)
                        if sale_price is not None
                        else None
                    ),
                    "images": [
                        {"id": img.id, "image_id": img.image_id, "image_url": img.image_url}
                        for img in sku.images
                    ],
                    "product": {
                        "name": sku.product.name,
                        "short_description": sku.product.short_description,
                    },
                }
            )

        promocode_view = None
        if promocode:
            total_minor = self.promocodes.apply(total_minor, promocode, target)
            if promocode.type == PromocodeType.FIXED:
                discount_value = self.prices.to_major_units(
                    self.promocodes.fixed_discount_in(promocode, target), target
                )
            else:
                discount_value = promocode.discount_value
            promocode_view = {
                "id": promocode.id,
                "code": promocode.code,
                "type": promocode.type,
                "discount_value": discount_value,
                "valid_to": promocode.valid_to,
            }

        return {
            "total_price": self.prices.to_major_units(total_minor, target),
            "total_minor": total_minor,
            "currency": target,
            "promocode": promocode_view,
            "items": lines,
        }

    def add_item(self, user_id: str, product_sku_id: int, quantity: int) -> CartItem:
        self._check_quantity(quantity)
        cart = self.get_user_cart(user_id)
        if not self.product_repo.get_sku(product_sku_id):
            log.info("Add cart item failed: product sku not found product_sku_id=%s", product_sku_id)
            raise NotFoundException("Product sku not found")

        existing = next(
            (it for it in cart.items if it.product_sku_id == product_sku_id), None
        )
        if existing is None and self.cart_repo.count_live_items(cart) >= settings.MAX_CART_ITEM_COUNT:
            log.info("Add cart item failed: cart item limit exceeded user_id=%s", user_id)
            raise CartServiceException("Cart item limit exceeded")

        with smart_transaction(self.db):
            item = self.cart_repo.add_or_update_item(cart, product_sku_id, quantity)
        return item

    def update_item(self, user_id: str, item_id: int, quantity: int) -> CartItem:
        self._check_quantity(quantity)
        cart = self.get_user_cart(user_id)
        item = self.cart_repo.get_item(cart, item_id)
        if not item:
            log.info("Update cart item failed: cart item not found cart_item_id=%s", item_id)
            raise NotFoundException("Cart item not found")
        with smart_transaction(self.db):
            item.quantity = quantity
            self.db.flush()
        return item

    def remove_item(self, user_id: str, item_id: int) -> None:
        cart = self.get_user_cart(user_id)
        item = self.cart_repo.get_item(cart, item_id)
        if not item:
            log.info("Delete cart item failed: cart item not found cart_item_id=%s", item_id)
            raise NotFoundException("Cart item not found")
        with smart_transaction(self.db):
            self.cart_repo.remove_item(item)

    def clear(self, user_id: str) -> None:
        cart = self.get_user_cart(user_id)
        with smart_transaction(self.db):
            self.cart_repo.clear(cart)

    def add_promocode(self, user_id: str, code: str) -> Promocode:
        cart = self.get_user_cart(user_id)
        promocode = self.promocodes.get(code=code, validate=True)

        used = (
            self.db.query(Order.id)
            .filter(
                Order.user_id == user_id,
                Order.promocode_id == promocode.id,
                Order.status != OrderStatus.CANCELLED,
            )
            .first()
        )
        if used:
            log.info(
                "Add cart promocode failed: already used in a previous order "
                "user_id=%s promocode_id=%s",
                user_id,
                promocode.id,
            )
            raise CartServiceException("This promocode has already been used in a previous order")

        with smart_transaction(self.db):
            self.cart_repo.set_promocode(cart.id, promocode.id)
        return promocode

    def remove_promocode(self, user_id: str) -> None:
        cart = self.get_user_cart(user_id)
        if not cart.promocode_id:
            log.info("Delete cart promocode failed: cart has no promocode user_id=%s", user_id)
            raise CartServiceException("Cart doesn't have a promocode")
        with smart_transaction(self.db):
            self.cart_repo.set_promocode(cart.id, None)

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity <= 0:
            raise CartServiceException("Quantity must be positive")
        if quantity > settings.CART_ITEM_MAX_QUANTITY:
            raise CartServiceException(
                f"Quantity must not exceed {settings.CART_ITEM_MAX_QUANTITY}"
            )

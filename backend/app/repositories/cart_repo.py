from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session, selectinload

from app.models.cart import Cart
from app.models.cart_item import CartItem
from app.models.product import Product, ProductSku


class CartRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_user(self, user_id: str) -> Optional[Cart]:
        return self.db.query(Cart).filter(Cart.user_id == user_id).first()

    def create(self, user_id: str) -> Cart:
        c = Cart(user_id=user_id)
        self.db.add(c)
        self.db.flush()
        return c

    def live_items(self, cart: Cart) -> List[CartItem]:
        """Cart lines whose product is not soft-deleted, newest first."""
        return (
            self.db.query(CartItem)
            .join(ProductSku, ProductSku.id == CartItem.product_sku_id)
            .join(Product, Product.id == ProductSku.product_id)
            .options(
                selectinload(CartItem.product_sku).selectinload(ProductSku.images),
                selectinload(CartItem.product_sku).selectinload(ProductSku.product),
            )
            .filter(CartItem.cart_id == cart.id, Product.is_deleted == False)  # noqa: E712
            .order_by(CartItem.created_at.desc(), CartItem.id.desc())
            .all()
        )

    def count_live_items(self, cart: Cart) -> int:
        return (
            self.db.query(func.count(CartItem.id))
            .join(ProductSku, ProductSku.id == CartItem.product_sku_id)
            .join(Product, Product.id == ProductSku.product_id)
            .filter(CartItem.cart_id == cart.id, Product.is_deleted == False)  # noqa: E712
            .scalar()
            or 0
        )

    def get_item(self, cart: Cart, item_id: int) -> Optional[CartItem]:
        return (
            self.db.query(CartItem)
            .filter(CartItem.id == item_id, CartItem.cart_id == cart.id)
            .first()
        )

    def add_or_update_item(self, cart: Cart, product_sku_id: int, qty: int) -> CartItem:
        item = (
            self.db.query(CartItem)
            .filter(CartItem.cart_id == cart.id, CartItem.product_sku_id == product_sku_id)
            .first()
        )
        if item:
            item.quantity = qty
        else:
            item = CartItem(cart_id=cart.id, product_sku_id=product_sku_id, quantity=qty)
            self.db.add(item)
        self.db.flush()
        return item

    def remove_item(self, item: CartItem):
        self.db.delete(item)
        self.db.flush()

    def clear(self, cart: Cart) -> int:
        n = self.db.query(CartItem).filter(CartItem.cart_id == cart.id).delete(
            synchronize_session=False
        )
        self.db.flush()
        return n

    def set_promocode(self, cart_id: int, promocode_id: Optional[int]) -> None:
        self.db.execute(
            update(Cart)
            .where(Cart.id == cart_id)
            .values(promocode_id=promocode_id)
            .execution_options(synchronize_session=False)
        )

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.models.enums import OrderStatus
from app.models.order import Order, OrderItem
from app.repositories.product_repo import ProductRepository
from app.repositories.promocode_repo import PromocodeRepository
from app.utils.timeutils import as_utc, utcnow
from app.utils.transactions import smart_transaction

log = logging.getLogger(__name__)


def is_order_expired(
    created_at: datetime, ttl_minutes: Optional[int] = None, now: Optional[datetime] = None
) -> bool:
    ttl = settings.PAYMENT_TTL_MINUTES if ttl_minutes is None else ttl_minutes
    now = as_utc(now) if now else utcnow()
    return now > as_utc(created_at) + timedelta(minutes=ttl)


class ExpirationService:
    """
    Cancels pending orders whose payment window has elapsed and hands their
    stock and promocode usage back.
    """

    def __init__(self, db: Session):
        self.db = db
        self.product_repo = ProductRepository(db)
        self.promocode_repo = PromocodeRepository(db)

    def cancel_expired_orders(self, now: Optional[datetime] = None) -> List[int]:
        now = as_utc(now) if now else utcnow()
        cutoff = now - timedelta(minutes=settings.PAYMENT_TTL_MINUTES)
        cancelled: List[int] = []
        with smart_transaction(self.db):
            candidates = (
                self.db.query(Order.id, Order.promocode_id)
                .filter(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
                .order_by(Order.id)
                .all()
            )
            for order_id, promocode_id in candidates:
                if self.cancel_pending(order_id, promocode_id):
                    cancelled.append(order_id)
        if cancelled:
            log.info("Expired orders cancelled: %s", cancelled)
        return cancelled

    def cancel_pending(self, order_id: int, promocode_id: Optional[int]) -> bool:
        """
        Flip one order pending → cancelled and release its resources. Runs
        inside the caller's transaction. Returns False when the order had
        already left `pending` (paid or reaped concurrently), in which case
        nothing is released.
        """
        res = self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
            .values(status=OrderStatus.CANCELLED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return False
        self.release_order_resources(order_id, promocode_id)
        return True

    def release_order_resources(self, order_id: int, promocode_id: Optional[int]) -> None:
        items = (
            self.db.query(OrderItem.product_sku_id, OrderItem.quantity)
            .filter(OrderItem.order_id == order_id)
            .all()
        )
        for product_sku_id, quantity in items:
            self.product_repo.adjust_stock(product_sku_id, quantity)
        if promocode_id:
            self.promocode_repo.adjust_usage(promocode_id, -1)
        log.debug("Resources released for order_id=%s items=%d", order_id, len(items))


def run_expiration_job() -> List[int]:
    """Scheduler entry point; owns its own session."""
    db = SessionLocal()
    try:
        return ExpirationService(db).cancel_expired_orders()
    except Exception:
        log.exception("Expired order cancellation failed")
        return []
    finally:
        db.close()

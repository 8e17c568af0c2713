import logging
from typing import Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.adapters import mock_payment
from app.adapters.mock_payment import MockPaymentGateway, PaymentGatewayError
from app.config import settings
from app.models.enums import OrderStatus, PaymentStatus
from app.models.order import Order
from app.models.payment import Payment
from app.services.errors import BusinessRuleException, NotFoundException, PaymentGatewayException
from app.services.expiration_service import ExpirationService, is_order_expired
from app.services.order_service import OrderService
from app.services.price_service import PriceService
from app.utils.timeutils import utcnow
from app.utils.transactions import smart_transaction

log = logging.getLogger(__name__)


class PaymentServiceException(BusinessRuleException):
    pass


class PaymentNotFound(NotFoundException):
    pass


def create_redirect_urls(order_number: str) -> Dict[str, str]:
    # {CHECKOUT_SESSION_ID} is substituted by the gateway on redirect
    base = f"{settings.CLIENT_URL}{settings.CLIENT_ORDERS_PATH}/{order_number}?sessionId={{CHECKOUT_SESSION_ID}}"
    return {"success_url": base, "cancel_url": f"{base}&type=cancel"}


class PaymentService:
    def __init__(
        self,
        db: Session,
        gateway: Optional[MockPaymentGateway] = None,
        price_service: Optional[PriceService] = None,
    ):
        self.db = db
        self.gateway = gateway or mock_payment.gateway
        self.orders = OrderService(db, price_service=price_service)
        self.expiration = ExpirationService(db)

    def create(self, user_id: str, order_number: str) -> str:
        """Open a checkout session for a pending order; returns the redirect URL."""
        order = self.orders.load(order_number, user_id)
        if order.status != OrderStatus.PENDING:
            log.info("Create payment failed: order is not pending number=%s", order_number)
            raise PaymentServiceException("Create payment failed: Order is not pending")
        if is_order_expired(order.created_at):
            log.info("Create payment failed: payment expired number=%s", order_number)
            raise PaymentServiceException("Payment expired")

        urls = create_redirect_urls(order.number)
        line_items = [
            {
                "name": it.product_sku.product.name,
                "image": it.product_sku.images[0].image_url if it.product_sku.images else None,
                "unit_amount": it.price,
                "quantity": it.quantity,
            }
            for it in order.items
        ]
        try:
            session = self.gateway.create_checkout_session(
                success_url=urls["success_url"],
                cancel_url=urls["cancel_url"],
                currency=order.currency.value,
                line_items=line_items,
                customer_email=order.email,
                amount_total=order.total,
            )
        except PaymentGatewayError as e:
            log.error("Checkout session creation failed number=%s: %s", order_number, e)
            raise PaymentGatewayException("Failed to create payment session")

        if not session.get("url"):
            log.warning("Create payment failed: empty redirect url number=%s", order_number)
            raise PaymentGatewayException("Payment service is currently unavailable")

        with smart_transaction(self.db):
            self.db.add(
                Payment(
                    order_id=order.id,
                    checkout_session_id=session["id"],
                    amount=order.total,
                    status=PaymentStatus.PENDING,
                )
            )
        log.info("Payment created number=%s session_id=%s", order_number, session["id"])
        return session["url"]

    def _find(self, user_id: str, session_id: str, action: str) -> Payment:
        payment = (
            self.db.query(Payment)
            .join(Order, Order.id == Payment.order_id)
            .filter(Payment.checkout_session_id == session_id, Order.user_id == user_id)
            .first()
        )
        if not payment:
            log.info("%s payment failed: payment doesn't exist session_id=%s", action, session_id)
            raise PaymentNotFound("Payment doesn't exist")
        if payment.order.status != OrderStatus.PENDING:
            log.info("%s payment failed: order is not pending order_id=%s", action, payment.order_id)
            raise PaymentServiceException("Order is not pending")
        if payment.status != PaymentStatus.PENDING:
            log.info(
                "%s payment failed: payment is not pending order_id=%s payment_id=%s",
                action,
                payment.order_id,
                payment.id,
            )
            raise PaymentServiceException("Payment is not pending")
        return payment

    def _set_status(self, payment_id: int, status: PaymentStatus, **values) -> int:
        res = self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
            .values(status=status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def capture(self, user_id: str, session_id: str) -> None:
        """
        Confirm a checkout session after the customer returns from the gateway.

        Order and payment must both still be pending. An order past its
        payment window is cancelled here (its stock and promocode usage are
        released, as the reaper would) and the payment marked expired.
        """
        payment = self._find(user_id, session_id, "Capture")
        payment_id = payment.id
        order_id = payment.order_id
        promocode_id = payment.order.promocode_id

        if is_order_expired(payment.order.created_at):
            with smart_transaction(self.db):
                self.expiration.cancel_pending(order_id, promocode_id)
                self._set_status(payment_id, PaymentStatus.EXPIRED)
            log.info("Capture payment failed: payment expired order_id=%s", order_id)
            raise PaymentServiceException("Payment expired")

        try:
            session = self.gateway.retrieve_session(session_id)
        except PaymentGatewayError as e:
            log.error("Checkout session lookup failed session_id=%s: %s", session_id, e)
            raise PaymentGatewayException("Payment service is currently unavailable")

        if session["payment_status"] != "paid":
            expired = session["expires_at"] < int(utcnow().timestamp())
            with smart_transaction(self.db):
                self._set_status(
                    payment_id, PaymentStatus.EXPIRED if expired else PaymentStatus.FAILED
                )
            log.info(
                "Capture payment failed: payment not paid order_id=%s session_expired=%s",
                order_id,
                expired,
            )
            raise PaymentServiceException("Payment not paid")

        with smart_transaction(self.db):
            res = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
                .values(status=OrderStatus.PAID, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                # reaped between the checks above and now
                log.info("Capture payment failed: order left pending order_id=%s", order_id)
                raise PaymentServiceException("Order is not pending")
            if self._set_status(
                payment_id, PaymentStatus.COMPLETED, transaction_id=session["payment_intent"]
            ) != 1:
                log.info("Capture payment failed: payment left pending payment_id=%s", payment_id)
                raise PaymentServiceException("Payment is not pending")
        log.info("Payment captured order_id=%s payment_id=%s", order_id, payment_id)

    def cancel(self, user_id: str, session_id: str) -> None:
        payment = self._find(user_id, session_id, "Cancel")
        payment_id = payment.id
        with smart_transaction(self.db):
            self._set_status(payment_id, PaymentStatus.CANCELLED)
        log.info("Payment cancelled payment_id=%s", payment_id)

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from app.config import settings


class PaymentGatewayError(Exception):
    """Raised when the gateway cannot create or look up a checkout session."""
    pass


class MockPaymentGateway:
    """
    In-process stand-in for a hosted checkout gateway.

    Sessions live in memory. A session starts "unpaid"; tests (or a demo
    client) call `complete_session` to simulate the customer paying on the
    hosted page. Expiry is reported through `expires_at` (epoch seconds), the
    way hosted gateways report it.
    """

    def __init__(
        self,
        delay_ms: int = 200,
        session_ttl_minutes: int = 30,
        base_url: str = "https://checkout.mock.local/pay",
    ):
        self.delay_seconds = delay_ms / 1000.0
        self.session_ttl = timedelta(minutes=session_ttl_minutes)
        self.base_url = base_url
        self.fail_next = False
        self._sessions: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def create_checkout_session(
        self,
        success_url: str,
        cancel_url: str,
        currency: str,
        line_items: List[Dict],
        customer_email: Optional[str] = None,
        amount_total: Optional[int] = None,
    ) -> Dict:
        """
        line_items: list of {name, image, unit_amount (minor units), quantity}
        amount_total: amount to charge in minor units when it differs from
        the line sum (an order-level discount); defaults to the line sum.

        Returns {id, url, expires_at}.
        """
        time.sleep(self.delay_seconds)
        if self.fail_next:
            self.fail_next = False
            raise PaymentGatewayError("Simulated gateway outage")

        subtotal = sum(li["unit_amount"] * li["quantity"] for li in line_items)
        if amount_total is not None and not 0 <= amount_total <= subtotal:
            raise PaymentGatewayError("amount_total must be between 0 and the line item subtotal")

        session_id = f"cs_mock_{uuid4().hex}"
        session = {
            "id": session_id,
            "url": f"{self.base_url}/{session_id}",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "currency": currency.lower(),
            "customer_email": customer_email,
            "amount_subtotal": subtotal,
            "amount_total": subtotal if amount_total is None else amount_total,
            "payment_status": "unpaid",
            "payment_intent": None,
            "expires_at": int((self._now() + self.session_ttl).timestamp()),
        }
        with self._lock:
            self._sessions[session_id] = session
        return {"id": session_id, "url": session["url"], "expires_at": session["expires_at"]}

    def retrieve_session(self, session_id: str) -> Dict:
        time.sleep(self.delay_seconds)
        with self._lock:
            session = self._sessions.get(session_id)
        if not session:
            raise PaymentGatewayError(f"No such checkout session: {session_id}")
        return {
            "id": session["id"],
            "payment_status": session["payment_status"],
            "payment_intent": session["payment_intent"],
            "amount_total": session["amount_total"],
            "currency": session["currency"],
            "expires_at": session["expires_at"],
        }

    def complete_session(self, session_id: str) -> str:
        """Mark a session paid; returns the payment intent id."""
        with self._lock:
            session = self._sessions[session_id]
            session["payment_status"] = "paid"
            session["payment_intent"] = f"pi_mock_{uuid4().hex}"
            return session["payment_intent"]

    def expire_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions[session_id]
            session["expires_at"] = int((self._now() - timedelta(seconds=1)).timestamp())

    def health_check(self) -> bool:
        return True

    def reset(self) -> None:
        with self._lock:
            self._sessions.clear()
        self.fail_next = False


gateway = MockPaymentGateway(
    delay_ms=settings.PAYMENT_MOCK_DELAY_MS,
    session_ttl_minutes=settings.PAYMENT_SESSION_TTL_MINUTES,
)

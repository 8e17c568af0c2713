from fastapi import APIRouter
from sqlalchemy import text

from app.adapters import mock_payment
from app.db import engine
from app.services.exchange_rates import rate_cache

router = APIRouter()


@router.get("/health", tags=["health"])
def health():
    db_ok = False
    payment_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except Exception:
        db_ok = False
    try:
        payment_ok = mock_payment.gateway.health_check()
    except Exception:
        payment_ok = False

    return {
        "status": "ok" if db_ok and payment_ok else "degraded",
        "db": db_ok,
        "payment_gateway": payment_ok,
        # informational; a cold cache is refreshed on first conversion
        "exchange_rates_cached": rate_cache.peek() is not None,
    }

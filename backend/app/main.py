import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.health import router as health_router
from app.api.routes_admin import router as admin_router
from app.api.routes_cart import router as cart_router
from app.api.routes_order import router as order_router
from app.api.routes_payment import router as payment_router
from app.config import settings
from app.db import init_db
from app.services.expiration_service import run_expiration_job
from app.utils.logging import setup_logging

log = logging.getLogger(__name__)


def build_scheduler() -> BackgroundScheduler:
    # exchange rates are not scheduled; the cache refreshes itself on a miss
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        run_expiration_job,
        "interval",
        seconds=settings.ORDER_EXPIRY_INTERVAL_SECONDS,
        id="cancel_expired_orders",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup
    setup_logging(settings.LOG_LEVEL)
    init_db()

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler()
        scheduler.start()
        log.info("Scheduler started: expiry every %ss", settings.ORDER_EXPIRY_INTERVAL_SECONDS)

    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)


app = FastAPI(title="Storefront Order Core", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(cart_router, tags=["cart"])

app.include_router(order_router, prefix="/api/orders", tags=["orders"])

app.include_router(payment_router, tags=["payments"])

app.include_router(admin_router, tags=["admin"])


def run():
    import uvicorn

    uvicorn.run("app.main:app", host=settings.APP_HOST, port=settings.APP_PORT)


if __name__ == "__main__":
    run()

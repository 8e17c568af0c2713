#!/usr/bin/env python3
"""
Seed a small demo catalogue (products, SKUs with stock) and a couple of
promocodes so the cart/checkout flow can be tried locally.

Usage:
    python scripts/seed_catalogue.py [--reset]
"""
import argparse
import logging
import os
import sys
from datetime import timedelta

# allow running from repo/scripts
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.config import settings  # noqa: E402
from app.db import SessionLocal, init_db  # noqa: E402
from app.models.enums import Currency, PromocodeType  # noqa: E402
from app.models.product import ProductSku  # noqa: E402
from app.models.promocode import Promocode  # noqa: E402
from app.repositories.product_repo import ProductRepository  # noqa: E402
from app.utils.logging import setup_logging  # noqa: E402
from app.utils.timeutils import utcnow  # noqa: E402

log = logging.getLogger("app.scripts.seed_catalogue")

# prices in RUB minor units
CATALOGUE = [
    {
        "name": "Oak dining table",
        "short_description": "Solid oak, seats six",
        "skus": [
            {"sku": "TBL-OAK-180", "price": 4999000, "sale_price": 4499000, "quantity": 7,
             "attributes": {"color": "natural", "width": 180, "height": 75, "length": 90}},
            {"sku": "TBL-OAK-220", "price": 5999000, "quantity": 3,
             "attributes": {"color": "natural", "width": 220, "height": 75, "length": 95}},
        ],
    },
    {
        "name": "Linen armchair",
        "short_description": "Deep seat, removable cover",
        "skus": [
            {"sku": "CHR-LIN-GRY", "price": 2490000, "quantity": 12, "attributes": {"color": "grey"}},
            {"sku": "CHR-LIN-BEI", "price": 2490000, "quantity": 0, "attributes": {"color": "beige"}},
        ],
    },
    {
        "name": "Wall shelf",
        "short_description": "Powder-coated steel",
        "skus": [
            {"sku": "SHF-STL-60", "price": 399000, "sale_price": 349000, "quantity": 40,
             "attributes": {"color": "black", "width": 60}},
        ],
    },
]

PROMOCODES = [
    {"code": "WELCOME10", "type": PromocodeType.PERCENT, "discount_value": 10, "usage_limit": 1000},
    {"code": "MINUS500", "type": PromocodeType.FIXED, "discount_value": 50000, "usage_limit": 100},
]


def seed(db) -> dict:
    """Insert whatever part of the demo data is missing. Safe to re-run."""
    repo = ProductRepository(db)
    created = {"skus": 0, "promocodes": 0}
    for entry in CATALOGUE:
        product = None
        for s in entry["skus"]:
            if db.query(ProductSku).filter(ProductSku.sku == s["sku"]).first():
                continue
            if product is None:
                product = repo.create_product(entry["name"], entry["short_description"])
            repo.create_sku(
                product,
                sku=s["sku"],
                price=s["price"],
                sale_price=s.get("sale_price"),
                quantity=s["quantity"],
                currency=Currency(settings.BASE_CURRENCY),
                attributes=s.get("attributes"),
                images=[{"image_id": s["sku"].lower(), "image_url": f"/static/{s['sku'].lower()}.jpg"}],
            )
            created["skus"] += 1

    now = utcnow()
    for p in PROMOCODES:
        if db.query(Promocode).filter(Promocode.code == p["code"]).first():
            continue
        db.add(
            Promocode(
                usage_count=0,
                valid_from=now,
                valid_to=now + timedelta(days=90),
                **p,
            )
        )
        created["promocodes"] += 1
    db.commit()
    return created


def main():
    parser = argparse.ArgumentParser(description="Seed demo catalogue and promocodes.")
    parser.add_argument("--reset", action="store_true", help="drop and recreate all tables first")
    args = parser.parse_args()

    setup_logging(settings.LOG_LEVEL)
    init_db(reset=args.reset)
    db = SessionLocal()
    try:
        created = seed(db)
    finally:
        db.close()
    log.info("Seeded %d SKUs and %d promocodes", created["skus"], created["promocodes"])


if __name__ == "__main__":
    main()

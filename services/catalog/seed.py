"""
services/catalog/seed.py
Idempotent catalog seeding. Rows are keyed by fixed ids; missing rows
are inserted and existing rows are left untouched.

Run at deploy time with:
    python -m services.catalog.seed
"""

import asyncio
import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import close_db, get_db_context, init_db
from shared.models.models import Offer, Service

logger = logging.getLogger(__name__)

INITIAL_SERVICES = [
    {
        "id": "service1",
        "name": "Home Dental Consultation",
        "description": "Comprehensive check-up at your home.",
        "base_price": Decimal("500"),
        "estimated_duration_minutes": 30,
        "image": "https://placehold.co/100x100/007bff/ffffff?text=Consult",
    },
    {
        "id": "service2",
        "name": "Scaling & Polishing",
        "description": "Professional teeth cleaning.",
        "base_price": Decimal("1500"),
        "estimated_duration_minutes": 60,
        "image": "https://placehold.co/100x100/28a745/ffffff?text=Scaling",
    },
    {
        "id": "service3",
        "name": "Teeth Whitening",
        "description": "Brighten your smile with professional whitening.",
        "base_price": Decimal("3000"),
        "estimated_duration_minutes": 90,
        "image": "https://placehold.co/100x100/ffc107/000000?text=Whiten",
    },
]

INITIAL_OFFERS = [
    {
        "id": "offer1",
        "title": "20% Off First Consultation",
        "description": "New patients get 20% off their first home consultation.",
        "image_url": "https://placehold.co/600x200/6f42c1/ffffff?text=Offer+1",
        "link_url": "#",
    },
    {
        "id": "offer2",
        "title": "Free Scaling with Whitening",
        "description": "Book a teeth whitening session and get scaling for free!",
        "image_url": "https://placehold.co/600x200/fd7e14/ffffff?text=Offer+2",
        "link_url": "#",
    },
]


async def _insert_missing(db: AsyncSession, model, rows: list[dict]) -> int:
    ids = [row["id"] for row in rows]
    existing = set((await db.execute(select(model.id).where(model.id.in_(ids)))).scalars())
    added = 0
    for row in rows:
        if row["id"] not in existing:
            db.add(model(**row))
            added += 1
    await db.flush()
    return added


async def seed_services(db: AsyncSession) -> int:
    added = await _insert_missing(db, Service, INITIAL_SERVICES)
    logger.info(f"Seeded {added} services")
    return added


async def seed_offers(db: AsyncSession) -> int:
    added = await _insert_missing(db, Offer, INITIAL_OFFERS)
    logger.info(f"Seeded {added} offers")
    return added


async def main() -> None:
    await init_db()
    async with get_db_context() as db:
        services_added = await seed_services(db)
        offers_added = await seed_offers(db)
    print(f"✅ Seeded {services_added} services and {offers_added} offers")
    await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    asyncio.run(main())

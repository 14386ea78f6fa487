"""
services/catalog/router.py
Public catalog reads (services and promotional offers) with a Redis
read cache, plus the explicit seeding endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.catalog.seed import seed_offers, seed_services
from shared.middleware.auth import require_admin
from shared.models.models import Offer, Service, User
from shared.schemas.schemas import OfferResponse, ServiceResponse

router = APIRouter(tags=["Catalog"])


async def invalidate_catalog_cache(redis) -> None:
    """Drop every cached catalog listing. Call after any catalog mutation."""
    await RedisCache(redis).invalidate_catalog()


# ── Public Endpoints ──────────────────────────────────────────

@router.get("/services")
async def list_services(db: AsyncSession = Depends(get_db), redis=Depends(get_redis)):
    """All bookable services ordered by name. Cached for REDIS_CACHE_TTL."""
    cache = RedisCache(redis)
    services = await cache.get_catalog("services")
    if services is None:
        rows = (await db.execute(select(Service).order_by(Service.name))).scalars().all()
        services = [ServiceResponse.model_validate(s).model_dump() for s in rows]
        await cache.set_catalog("services", services)

    return {
        "message": "Services retrieved successfully.",
        "success": True,
        "services": services,
    }


@router.get("/offers")
async def list_offers(db: AsyncSession = Depends(get_db), redis=Depends(get_redis)):
    """Active promotional offers, newest first."""
    cache = RedisCache(redis)
    offers = await cache.get_catalog("offers")
    if offers is None:
        rows = (
            await db.execute(select(Offer).order_by(Offer.created_at.desc(), Offer.id))
        ).scalars().all()
        offers = [OfferResponse.model_validate(o).model_dump() for o in rows]
        await cache.set_catalog("offers", offers)

    return {
        "message": "Offers retrieved successfully.",
        "success": True,
        "offers": offers,
    }


# ── Seeding ───────────────────────────────────────────────────

@router.post("/seed/services")
async def seed_services_endpoint(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    added = await seed_services(db)
    await db.commit()
    await invalidate_catalog_cache(redis)
    return {
        "message": f"{added} services seeded successfully (skipped existing ones).",
        "success": True,
        "added": added,
    }


@router.post("/seed/offers")
async def seed_offers_endpoint(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    added = await seed_offers(db)
    await db.commit()
    await invalidate_catalog_cache(redis)
    return {
        "message": f"{added} offers seeded successfully (skipped existing ones).",
        "success": True,
        "added": added,
    }

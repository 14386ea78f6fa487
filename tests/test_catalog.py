"""
tests/test_catalog.py
Tests for the public catalog, its Redis read cache and idempotent seeding.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.catalog.seed import INITIAL_OFFERS, INITIAL_SERVICES, seed_offers, seed_services
from shared.models.models import Offer, Service, User
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_seed_is_idempotent(db: AsyncSession):
    assert await seed_services(db) == len(INITIAL_SERVICES)
    assert await seed_offers(db) == len(INITIAL_OFFERS)
    await db.commit()

    assert await seed_services(db) == 0
    assert await seed_offers(db) == 0
    await db.commit()

    assert await db.scalar(select(func.count(Service.id))) == len(INITIAL_SERVICES)
    assert await db.scalar(select(func.count(Offer.id))) == len(INITIAL_OFFERS)


@pytest.mark.asyncio
async def test_seed_leaves_existing_rows_untouched(db: AsyncSession, service: Service):
    service.name = "Custom Name"
    await db.commit()

    added = await seed_services(db)
    await db.commit()
    assert added == len(INITIAL_SERVICES) - 1

    name = await db.scalar(select(Service.name).where(Service.id == "service2"))
    assert name == "Custom Name"


@pytest.mark.asyncio
async def test_seed_endpoints_require_admin(client: AsyncClient, patient_user: User):
    response = await client.post("/seed/services", headers=auth_headers(patient_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_seed_endpoints(client: AsyncClient, admin_user: User):
    headers = auth_headers(admin_user)
    first = await client.post("/seed/services", headers=headers)
    assert first.status_code == 200
    assert first.json()["added"] == 3

    again = await client.post("/seed/services", headers=headers)
    assert again.json()["added"] == 0

    offers = await client.post("/seed/offers", headers=headers)
    assert offers.json()["added"] == 2


@pytest.mark.asyncio
async def test_services_are_public_and_sorted(client: AsyncClient, admin_user: User):
    await client.post("/seed/services", headers=auth_headers(admin_user))

    response = await client.get("/services")
    assert response.status_code == 200
    names = [s["name"] for s in response.json()["services"]]
    assert names == sorted(names)
    assert len(names) == 3


@pytest.mark.asyncio
async def test_offers_are_public(client: AsyncClient, admin_user: User):
    await client.post("/seed/offers", headers=auth_headers(admin_user))

    response = await client.get("/offers")
    assert response.status_code == 200
    assert {o["id"] for o in response.json()["offers"]} == {"offer1", "offer2"}


@pytest.mark.asyncio
async def test_services_cached_until_admin_mutation(
    client: AsyncClient, admin_user: User, service: Service, db: AsyncSession, fake_redis
):
    first = await client.get("/services")
    assert [s["id"] for s in first.json()["services"]] == ["service2"]
    assert await fake_redis.get("catalog:services") is not None

    # A direct write bypasses invalidation, so the cached copy is served
    db.add(Service(id="direct", name="Aligners", base_price=1, estimated_duration_minutes=5))
    await db.commit()
    cached = await client.get("/services")
    assert [s["id"] for s in cached.json()["services"]] == ["service2"]

    # Admin mutations drop the cache
    await client.put(
        "/admin/services/service2", headers=auth_headers(admin_user), json={"name": "Deep Cleaning"}
    )
    fresh = await client.get("/services")
    assert {s["name"] for s in fresh.json()["services"]} == {"Aligners", "Deep Cleaning"}

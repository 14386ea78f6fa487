"""
config/redis_client.py
Async Redis client. Three concerns share one connection pool, each under
its own key prefix:

    catalog:<kind>        cached public listings (services, offers)
    jwt_revoked:<jti>     access tokens signed out before expiry
    rate:unauth:<ip>      per-minute counter for anonymous callers
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis

from config.settings import settings

CATALOG_PREFIX = "catalog:"
REVOKED_PREFIX = "jwt_revoked:"
UNAUTH_RATE_PREFIX = "rate:unauth:"

# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    await redis_client.ping()


async def close_redis() -> None:
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> aioredis.Redis:
    """FastAPI dependency. Fails loudly when the lifespan never ran."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


class RedisCache:
    """Typed access to the platform's Redis keys."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── Catalog ───────────────────────────────────────────────
    async def get_catalog(self, kind: str) -> Optional[list[dict[str, Any]]]:
        raw = await self.client.get(f"{CATALOG_PREFIX}{kind}")
        return json.loads(raw) if raw is not None else None

    async def set_catalog(self, kind: str, items: list[dict[str, Any]]) -> None:
        await self.client.setex(
            f"{CATALOG_PREFIX}{kind}", settings.REDIS_CACHE_TTL, json.dumps(items, default=str)
        )

    async def invalidate_catalog(self) -> int:
        keys = [key async for key in self.client.scan_iter(match=f"{CATALOG_PREFIX}*")]
        return await self.client.delete(*keys) if keys else 0

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        # Entry only needs to outlive the token itself
        await self.client.setex(f"{REVOKED_PREFIX}{jti}", max(ttl_seconds, 1), "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"{REVOKED_PREFIX}{jti}") == 1

    # ── Anonymous Rate Limit ──────────────────────────────────
    async def allow_unauthenticated(self, client_ip: str) -> bool:
        """
        One fixed 60s window per IP. The limit is read on every call so
        it can be tuned without a restart of the counter.
        """
        key = f"{UNAUTH_RATE_PREFIX}{client_ip}"
        count = await self.client.incr(key)
        if count == 1:
            await self.client.expire(key, 60)
        return count <= settings.RATE_LIMIT_UNAUTH_PER_MINUTE

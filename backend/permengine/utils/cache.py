"""Redis-backed principal cache.

Optional: enabled only when `principal_cache_ttl_seconds > 0`.  A cached
principal that outlives a revocation would grant access after the grant is
gone, so user management MUST call `invalidate_principal()` whenever it
changes a user's role, grants or active flag.  The TTL only bounds the
damage if that call is missed.

Redis failures never block resolution: we log and read through to the
underlying store.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import redis.asyncio as redis

from permengine.auth.stores import PrincipalRecord, PrincipalStore
from permengine.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "principal"

# Global Redis connection pools, one per URL
_redis_clients: dict[str, redis.Redis] = {}


async def get_redis(url: Optional[str] = None) -> redis.Redis:
    """Get or create the Redis client for `url` (default: settings.redis_url)."""
    url = url or settings.redis_url
    client = _redis_clients.get(url)
    if client is None:
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
        _redis_clients[url] = client
    return client


async def close_redis():
    """Close Redis connections (call on app shutdown)."""
    while _redis_clients:
        _, client = _redis_clients.popitem()
        await client.aclose()


def principal_key(principal_id: str) -> str:
    return f"{KEY_PREFIX}:{principal_id}"


class CachingPrincipalStore:
    """Read-through cache in front of another PrincipalStore.

    Misses (unknown ids) are never cached, so a freshly created user is
    visible immediately.  Without an explicit client the shared pool for
    `redis_url` (or settings.redis_url) is used on first access.
    """

    def __init__(
        self,
        store: PrincipalStore,
        ttl: int,
        client: redis.Redis | None = None,
        redis_url: str | None = None,
    ):
        self._store = store
        self._client = client
        self._ttl = ttl
        self.redis_url = redis_url

    async def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis(self.redis_url)
        return self._client

    async def get_principal_by_id(self, principal_id: str) -> PrincipalRecord | None:
        key = principal_key(principal_id)
        client = await self._redis()
        try:
            cached_value = await client.get(key)
            if cached_value:
                logger.debug(f"Cache HIT: {key}")
                return json.loads(cached_value)
            logger.debug(f"Cache MISS: {key}")
        except redis.RedisError as e:
            logger.warning(f"Redis error (falling back to store): {e}")
            return await self._store.get_principal_by_id(principal_id)

        record = await self._store.get_principal_by_id(principal_id)
        if record is not None:
            try:
                await client.setex(key, self._ttl, json.dumps(dict(record)))
            except redis.RedisError as e:
                logger.warning(f"Failed to cache principal: {e}")
        return record

    async def invalidate(self, principal_id: str) -> bool:
        return await invalidate_principal(await self._redis(), principal_id)


async def invalidate_principal(client: redis.Redis, principal_id: str) -> bool:
    """Drop a cached principal.  Returns False if Redis could not be reached."""
    try:
        await client.delete(principal_key(principal_id))
        logger.info(f"Invalidated cached principal {principal_id}")
        return True
    except redis.RedisError as e:
        logger.error(f"Failed to invalidate cached principal: {e}")
        return False

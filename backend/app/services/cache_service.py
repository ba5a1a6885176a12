"""
Redis caching service for ticket listings.

CACHING STRATEGY
================

What we cache:
  - Ticket search responses (paginated, JSON-serialized)
  - Cache key pattern: "tickets:list:<sorted query params>"

Invalidation strategy:
  - On ticket create/update/delete: drop every ticket list key
  - On booking create/cancel/expire: drop every ticket list key
    (available_quantity changed)
  - TTL-based expiry as safety net

Single tickets are never cached: the booking flow needs the live stock.

Redis is optional. When it is disabled or unreachable every call degrades to
a cache miss and the database answers.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.metrics import record_cache_operation
from app.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

TICKET_LIST_PREFIX = "tickets:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except RedisError as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def make_ticket_list_key(params: dict[str, Any]) -> str:
    parts = [f"{name}={params[name]}" for name in sorted(params) if params[name] is not None]
    return TICKET_LIST_PREFIX + "&".join(parts)


async def get_cached_tickets(params: dict[str, Any]) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    key = make_ticket_list_key(params)
    try:
        data = await client.get(key)
    except RedisError as e:
        logger.error("cache_get_error", key=key, error=str(e))
        return None

    record_cache_operation("get", hit=data is not None)
    if data:
        logger.debug("cache_hit", key=key)
        return json.loads(data)
    logger.debug("cache_miss", key=key)
    return None


async def set_cached_tickets(params: dict[str, Any], data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    key = make_ticket_list_key(params)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_ticket_cache() -> None:
    """Drop all cached ticket listings (SCAN on the key prefix)."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=TICKET_LIST_PREFIX + "*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except RedisError as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for the health endpoint."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
    except RedisError as e:
        return {"status": "error", "error": str(e)}

    hits = info.get("keyspace_hits", 0)
    misses = info.get("keyspace_misses", 0)
    return {
        "status": "connected",
        "hits": hits,
        "misses": misses,
        "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
    }

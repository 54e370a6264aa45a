"""Redis store for caching and distributed locks.

Handles:
- Caching with TTL policies
- Distributed locks (overlapping cron invocations)

TTL policies:
- FX rates (OpenExchangeRates): ~1 hour
- Provider catalog search results (style code -> product id): 24 hours
- Scheduler tier lock: 15 minutes
- Retention lock: 1 hour

Redis is optional. Callers treat RuntimeError from an uninitialized client as
"no cache, no lock" and carry on.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from market_sync.settings import Settings, get_settings

# TTL constants (in seconds)
TTL_FX_RATES = 3600  # 1 hour
TTL_CATALOG_SEARCH = 86400  # 24 hours
TTL_SCHEDULER_LOCK = 900  # 15 minutes
TTL_RETENTION_LOCK = 3600  # 1 hour

# Key prefixes
PREFIX_LOCK = "lock:"
PREFIX_FX_RATES = "fx:rates:"
PREFIX_CATALOG_SEARCH = "catalog:search:"

# Redis client (initialized on startup)
_redis: redis.Redis | None = None
logger = logging.getLogger("uvicorn.error")


async def init_redis(settings: Settings | None = None) -> None:
    """Initialize Redis connection."""
    global _redis
    settings = settings or get_settings()
    _redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    # Validate connectivity early (especially for `rediss://` in production).
    await _redis.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def _get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


# ============================================================
# Generic cache operations
# ============================================================


async def cache_get(key: str) -> str | None:
    """Get value from cache.

    Args:
        key: Cache key.

    Returns:
        Cached value or None if not found.
    """
    return await _get_redis().get(key)


async def cache_set(key: str, value: str, ttl: int) -> None:
    """Set value in cache with TTL.

    Args:
        key: Cache key.
        value: Value to cache.
        ttl: Time-to-live in seconds.
    """
    await _get_redis().setex(key, ttl, value)


async def cache_delete(key: str) -> None:
    await _get_redis().delete(key)


async def cache_get_json(key: str) -> Any | None:
    """Get JSON value from cache (None if missing)."""
    value = await cache_get(key)
    if value:
        return json.loads(value)
    return None


async def cache_set_json(key: str, value: Any, ttl: int) -> None:
    await cache_set(key, json.dumps(value), ttl)


# ============================================================
# FX rates cache (OpenExchangeRates)
# ============================================================


async def get_fx_rates_cache(base: str = "USD") -> dict[str, Any] | None:
    """Get cached FX rates payload for a base currency."""
    return await cache_get_json(f"{PREFIX_FX_RATES}{base.upper()}")


async def set_fx_rates_cache(base: str, payload: dict[str, Any]) -> None:
    """Cache FX rates payload for a base currency (TTL ~1 hour)."""
    await cache_set_json(f"{PREFIX_FX_RATES}{base.upper()}", payload, TTL_FX_RATES)


# ============================================================
# Provider catalog search cache
# ============================================================


async def get_catalog_search_cache(provider: str, style_id: str) -> str | None:
    """Cached provider product id for a style code."""
    return await cache_get(f"{PREFIX_CATALOG_SEARCH}{provider}:{style_id.upper()}")


async def set_catalog_search_cache(provider: str, style_id: str, external_id: str) -> None:
    await cache_set(f"{PREFIX_CATALOG_SEARCH}{provider}:{style_id.upper()}", external_id, TTL_CATALOG_SEARCH)


# ============================================================
# Distributed locks
# ============================================================


async def acquire_lock(key: str, ttl: int = TTL_SCHEDULER_LOCK) -> bool:
    """Acquire a distributed lock.

    Args:
        key: Lock key (e.g., scheduler:hot).
        ttl: Lock timeout in seconds.

    Returns:
        True if lock acquired, False if already locked.
    """
    lock_key = f"{PREFIX_LOCK}{key}"
    # SET NX (only if not exists) with TTL
    result = await _get_redis().set(lock_key, "1", nx=True, ex=ttl)
    return result is not None and result is not False


async def release_lock(key: str) -> None:
    await cache_delete(f"{PREFIX_LOCK}{key}")

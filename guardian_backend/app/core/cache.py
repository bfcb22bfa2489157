"""
Redis cache layer — JSON get/set with TTL and namespace prefixes.

Used for reverse-geocode results, which change rarely and are requested
for the same coordinates over and over while an alert is live.

Usage:
    from guardian_backend.app.core.cache import create_cache

    cache = create_cache(settings.REDIS_URL, ttl=settings.GEOCODE_CACHE_TTL)
    if cache is not None:
        cache.set("51.50790:-0.08770", {"formatted_address": "..."})
        cached = cache.get("51.50790:-0.08770")

Cache failures never propagate: a Redis outage degrades to cache misses.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)


class GeocodeCache:
    """Namespaced JSON cache on top of a ``redis.Redis`` client."""

    def __init__(self, client: Any, *, ttl: int = 86400, prefix: str = "geocode"):
        self._client = client
        self.ttl = ttl
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[Any]:
        """Get a cached value by key. Returns None on miss or error."""
        try:
            raw = self._client.get(self._key(key))
            if raw is not None:
                return json.loads(raw)
        except (redis.RedisError, ValueError) as e:
            logger.warning("Cache GET error for %s: %s", key, e)
        return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set a cached value with optional TTL (seconds)."""
        try:
            serialised = json.dumps(value, default=str)
            self._client.set(self._key(key), serialised, ex=ttl or self.ttl)
            return True
        except (redis.RedisError, TypeError) as e:
            logger.warning("Cache SET error for %s: %s", key, e)
            return False

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    def close(self) -> None:
        self._client.close()
        logger.info("Redis connection closed")


def create_cache(url: Optional[str], *, ttl: int = 86400) -> Optional[GeocodeCache]:
    """Build a cache for ``url``; None when caching is not configured."""
    if not url:
        logger.info("REDIS_URL not set, geocode caching disabled")
        return None
    client = redis.Redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=2.0,
        socket_connect_timeout=2.0,
    )
    logger.info("Redis cache configured: %s", url.split("@")[-1])
    return GeocodeCache(client, ttl=ttl)

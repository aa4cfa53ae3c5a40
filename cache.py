"""
Redis Cache

Two concerns live here:

1. Reference maps. The id -> name projections of Docketwise users, clients,
   matter types and statuses, stored as JSON under docketwise:*-map with a
   24-hour expiry. They are rebuilt from PostgreSQL whenever any one of
   them is missing, unparseable, or Redis is down.

2. Per-user dashboard and matter-list caches, which the matter sync
   invalidates by key pattern once it finishes.
"""
import json
import logging
from typing import Dict, Optional

import redis

from config import REDIS_URL, REFERENCE_CACHE_TTL_SECONDS
from models import ReferenceMaps

logger = logging.getLogger(__name__)

REFERENCE_KEYS = {
    "users": "docketwise:user-map",
    "clients": "docketwise:client-map",
    "types": "docketwise:type-map",
    "statuses": "docketwise:status-map",
}

# Key prefixes for per-user read caches
CACHE_KEYS = {
    "dashboard_stats": "dashboard:stats",
    "dashboard_assignees": "dashboard:assignees",
    "dashboard_matters": "dashboard:matters",
    "matters_list": "matters:list",
}

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Get or create the shared Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True, socket_timeout=3)
    return _redis_client


def _decode_map(value: str) -> Dict[int, str]:
    data = json.loads(value)
    if not isinstance(data, dict):
        raise ValueError("reference map is not an object")
    return {int(k): v for k, v in data.items()}


class ReferenceCache:
    """
    Reference map cache with a relational fallback.

    Usage:
        maps = ReferenceCache().load()
        maps.users.get(42)
    """

    def __init__(self, redis_client: redis.Redis = None, store=None, ttl: int = REFERENCE_CACHE_TTL_SECONDS):
        if store is None:
            from db.reference import ReferenceStore
            store = ReferenceStore()
        self.redis = redis_client if redis_client is not None else get_redis()
        self.store = store
        self.ttl = ttl

    def load(self) -> ReferenceMaps:
        """All four maps from Redis, or all four from the database."""
        kinds = list(REFERENCE_KEYS)
        try:
            values = self.redis.mget([REFERENCE_KEYS[k] for k in kinds])
        except redis.RedisError as e:
            logger.warning("Redis unavailable for reference maps (%s), loading from database", e)
            return self.store.load_maps()

        maps = ReferenceMaps()
        for kind, value in zip(kinds, values):
            if value is None:
                logger.info("Reference cache miss for %s, loading from database", REFERENCE_KEYS[kind])
                return self.store.load_maps()
            try:
                setattr(maps, kind, _decode_map(value))
            except (TypeError, ValueError) as e:
                logger.warning("Corrupt reference cache %s (%s), loading from database", REFERENCE_KEYS[kind], e)
                return self.store.load_maps()
        return maps

    def refresh(self, kind: str, mapping: Dict[int, str]):
        """Overwrite one map with a fresh 24-hour expiry."""
        key = REFERENCE_KEYS[kind]
        payload = json.dumps({str(k): v for k, v in mapping.items()})
        try:
            self.redis.setex(key, self.ttl, payload)
            logger.info("Cached %d entries in %s", len(mapping), key)
        except redis.RedisError as e:
            logger.warning("Failed to cache %s: %s", key, e)


def invalidate_user_caches(user_id: str, redis_client: redis.Redis = None) -> int:
    """Delete every dashboard and matter-list cache entry for a user."""
    client = redis_client if redis_client is not None else get_redis()
    patterns = [f"{prefix}:{user_id}*" for prefix in CACHE_KEYS.values()]
    patterns.append(f"dashboard:*:{user_id}")
    deleted = 0
    try:
        for pattern in patterns:
            keys = list(client.scan_iter(match=pattern, count=500))
            if keys:
                deleted += client.delete(*keys)
    except redis.RedisError as e:
        logger.warning("Failed to invalidate caches for user %s: %s", user_id, e)
        return deleted
    logger.info("Invalidated %d cache keys for user %s", deleted, user_id)
    return deleted

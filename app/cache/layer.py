import asyncio
import json
import logging
from typing import Any, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import Settings, get_settings
from app.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)


class CacheLayer:
    """
    Two-tier cache for data read from the todo service.

    L1: Process-local TTLCache (fast, limited size)
    L2: Redis (shared between workers)

    Read-through values go through both tiers. Import-session state uses
    the raw ``read_many``/``write`` operations instead, which talk to Redis
    only: several workers serve the same session, so a process-local copy
    would go stale.
    """

    def __init__(self):
        self._settings: Settings | None = None
        self._redis: Redis | None = None
        self.l1: TTLCache | None = None
        self._initialized = False

        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
        }

    async def init_cache(
        self, settings: Settings | None = None, redis: Redis | None = None
    ):
        """Initialize settings, L1 cache, and Redis connection."""
        if self._initialized:
            return

        self._settings = settings or self._settings or get_settings()
        self.l1 = TTLCache(
            maxsize=self._settings.l1_maxsize, ttl=self._settings.l1_ttl_seconds
        )

        try:
            self._redis = redis or Redis.from_url(
                self._settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=self._settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
            await self._redis.ping()
            logger.info("Redis connection established")
        except (RedisError, OSError) as e:
            # L1-only; import sessions are unavailable until restart
            logger.error("Redis initialization failed: %s", e)
            self._redis = None

        self._initialized = True
        logger.info("Cache layer initialized")

    @property
    def redis(self) -> Redis | None:
        return self._redis

    def _l1_key(self, key: str) -> str:
        return f"{self._settings.cache_namespace}l1:{key}"

    def _l2_key(self, key: str) -> str:
        return f"{self._settings.cache_namespace}l2:{key}"

    def _raw_key(self, key: str) -> str:
        return f"{self._settings.cache_namespace}{key}"

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    async def get(
        self,
        key: str,
        loader: Optional[Callable[[], Any]] = None,
        l2_ttl: Optional[int] = None,
    ):
        """
        Retrieve value from cache hierarchy: L1 -> L2 -> loader.

        Args:
            key: Cache key (namespaced automatically)
            loader: Async function to load value on cache miss
            l2_ttl: TTL for L2 cache in seconds (uses default if None)

        Returns:
            Cached value or loaded value, or None if not found
        """
        await self.init_cache()

        l1_key = self._l1_key(key)

        if l1_key in self.l1:
            self.stats["l1_hits"] += 1
            logger.debug("L1 hit for %s", key)
            return self.l1[l1_key]

        value = await self._get_l2(key)
        if value is not None:
            self.stats["l2_hits"] += 1
            logger.debug("L2 hit for %s", key)
            self.l1[l1_key] = value
            return value

        if loader is None:
            self.stats["misses"] += 1
            return None

        # only one coroutine per key reaches the loader
        async with _get_lock_for_key(key):
            if l1_key in self.l1:
                return self.l1[l1_key]
            value = await self._get_l2(key)
            if value is not None:
                self.l1[l1_key] = value
                return value

            self.stats["misses"] += 1
            logger.debug("Loading %s from source", key)
            value = await loader()
            if value is None:
                return None

            await self._set_both_layers(key, value, l2_ttl)
            return value

    async def _get_l2(self, key: str) -> Any:
        if not self._redis:
            return None
        try:
            raw = await self._redis.get(self._l2_key(key))
        except RedisError as e:
            logger.error("Redis GET error for %s: %s", key, e)
            self.stats["errors"] += 1
            return None
        return None if raw is None else self._deserialize(raw)

    async def _set_both_layers(self, key: str, value: Any, l2_ttl: int | None = None):
        self.l1[self._l1_key(key)] = value

        if self._redis:
            try:
                ttl = l2_ttl or self._settings.l2_ttl_seconds
                await self._redis.set(self._l2_key(key), self._serialize(value), ex=ttl)
            except RedisError as e:
                logger.error("Redis SET error for %s: %s", key, e)
                self.stats["errors"] += 1

    async def set(self, key: str, value: Any, l2_ttl: Optional[int] = None):
        await self.init_cache()
        await self._set_both_layers(key, value, l2_ttl)

    async def delete(self, *keys: str):
        """Delete keys from both layers; Redis errors propagate to the caller."""
        await self.init_cache()

        for key in keys:
            self.l1.pop(self._l1_key(key), None)
        if self._redis and keys:
            await self._redis.delete(*(self._l2_key(key) for key in keys))
            logger.debug("Deleted %s from both layers", ", ".join(keys))

    # -- raw Redis access (no L1) ------------------------------------------

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise CacheUnavailableError("Session store is not available")
        return self._redis

    async def read_many(self, keys: list[str]) -> list[Any]:
        """Fetch several keys in one round trip; missing keys come back as None."""
        await self.init_cache()
        redis = self._require_redis()
        try:
            raws = await redis.mget([self._raw_key(key) for key in keys])
        except RedisError as e:
            raise CacheUnavailableError(f"Redis MGET failed: {e}") from e
        return [None if raw is None else self._deserialize(raw) for raw in raws]

    async def write(self, key: str, value: Any, ttl: int):
        await self.init_cache()
        redis = self._require_redis()
        try:
            await redis.set(self._raw_key(key), self._serialize(value), ex=ttl)
        except RedisError as e:
            raise CacheUnavailableError(f"Redis SET failed: {e}") from e

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error("Error closing Redis: %s", e)

    def reset(self):
        """Forget connection and contents so the next call re-initializes."""
        self._redis = None
        self.l1 = None
        self._initialized = False
        for name in self.stats:
            self.stats[name] = 0
        _locks.clear()

    def get_stats(self) -> dict:
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]
        return {
            **self.stats,
            "l1_size": len(self.l1) if self.l1 else 0,
            "redis_connected": self._redis is not None,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total if total else 0
            ),
        }


# Per-key locks for stampede protection. setdefault() hands every
# concurrent caller the same lock; idle locks are evicted after 300s.
_locks = TTLCache(maxsize=10_000, ttl=300)


def _get_lock_for_key(key: str) -> asyncio.Lock:
    return _locks.setdefault(key, asyncio.Lock())


# Cache layer instance (singleton per worker)
cache_layer = CacheLayer()

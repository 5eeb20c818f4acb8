"""
Redis Caching Layer

Two-tier cache for upstream property data: an in-process LRU (L1) in front
of Redis (L2). Reads check L1, fall through to L2 and back-fill L1 on an L2
hit. Writes go to both tiers. Entries are JSON-serializable values with an
expiry; they are replaced wholesale on every write.
"""
import asyncio
import math
import time
from collections import OrderedDict
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from config.settings import settings
from src.parcelcache.models.parcel import CacheEntry, CacheStatus
from src.parcelcache.utils.logger import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class Namespace(str, Enum):
    """Independently keyed and TTL'd cache namespaces."""
    MAP_TILE = "map"
    ADDRESS = "addr"
    LOOKUP = "lookup"
    SNAPSHOT = "snap"


def get_redis_client(redis_url: Optional[str] = None) -> Optional[redis.Redis]:
    """
    Build a Redis client.

    Args:
        redis_url: Override the configured URL

    Returns:
        Redis client if reachable, None if not configured or the ping fails
    """
    redis_url = settings.redis_url if redis_url is None else redis_url
    if not redis_url:
        logger.info("redis_disabled", reason="redis_url not configured")
        return None

    try:
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        client.ping()
    except (RedisError, ValueError) as e:
        logger.warning("redis_connection_failed", error=str(e))
        return None
    return client


class LocalCache:
    """
    In-process L1 cache, one bounded LRU per namespace.

    Created once per process and never persisted.
    """

    def __init__(self, max_entries: Optional[int] = None, clock: Clock = time.time):
        self.max_entries = max_entries if max_entries is not None else settings.local_cache_max_entries
        self.clock = clock
        self._entries: Dict[Namespace, "OrderedDict[str, CacheEntry]"] = {
            namespace: OrderedDict() for namespace in Namespace
        }

    def get(self, namespace: Namespace, key: str, allow_stale: bool = False) -> Optional[CacheEntry]:
        entries = self._entries[namespace]
        entry = entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()) and not allow_stale:
            return None
        entries.move_to_end(key)
        return entry

    def set(self, namespace: Namespace, key: str, entry: CacheEntry) -> None:
        entries = self._entries[namespace]
        entries[key] = entry
        entries.move_to_end(key)
        while len(entries) > self.max_entries:
            entries.popitem(last=False)

    def delete(self, namespace: Namespace, key: str) -> None:
        self._entries[namespace].pop(key, None)

    def clear(self) -> None:
        for entries in self._entries.values():
            entries.clear()

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())


class RedisCache:
    """
    L2 cache on Redis.

    Keys look like ``attom:map:15:9647:12320``. Failures are logged and
    reported as a miss (reads) or skipped (writes) so a Redis outage never
    fails a request.
    """

    def __init__(self, client: redis.Redis, prefix: Optional[str] = None):
        self.client = client
        self.prefix = prefix or settings.redis_key_prefix

    def key_for(self, namespace: Namespace, key: str) -> str:
        return f"{self.prefix}:{namespace.value}:{key}"

    def get(self, namespace: Namespace, key: str) -> Optional[CacheEntry]:
        redis_key = self.key_for(namespace, key)
        try:
            raw = self.client.get(redis_key)
        except RedisError as e:
            logger.warning("cache_read_error", key=redis_key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning("cache_entry_invalid", key=redis_key, error=str(e))
            return None

    def set(self, namespace: Namespace, key: str, entry: CacheEntry, ttl_seconds: float) -> None:
        redis_key = self.key_for(namespace, key)
        try:
            self.client.setex(redis_key, max(1, math.ceil(ttl_seconds)), entry.model_dump_json())
        except RedisError as e:
            logger.warning("cache_write_error", key=redis_key, error=str(e))

    def delete(self, namespace: Namespace, key: str) -> None:
        redis_key = self.key_for(namespace, key)
        try:
            self.client.delete(redis_key)
        except RedisError as e:
            logger.warning("cache_delete_error", key=redis_key, error=str(e))

    def stats(self) -> dict:
        """
        Key counts per namespace and server hit rate.

        Returns:
            Dictionary with cache stats
        """
        try:
            info = self.client.info("stats")
            hits = info.get("keyspace_hits", 0)
            misses = info.get("keyspace_misses", 0)
            namespaces = {
                namespace.value: sum(1 for _ in self.client.scan_iter(match=self.key_for(namespace, "*")))
                for namespace in Namespace
            }
            return {
                "available": True,
                "keys": namespaces,
                "hits": hits,
                "misses": misses,
                "hit_rate": hits / max(hits + misses, 1) * 100,
            }
        except RedisError as e:
            return {
                "available": False,
                "error": str(e)
            }


class CacheStore:
    """
    Composed L1/L2 cache over the three namespaces.

    ``retention`` extends how long an entry physically survives in Redis past
    its logical expiry, per namespace, so expired entries can still be read
    with ``allow_stale=True``.
    """

    def __init__(
        self,
        local: Optional[LocalCache] = None,
        remote: Optional[RedisCache] = None,
        retention: Optional[Dict[Namespace, float]] = None,
        clock: Clock = time.time,
    ):
        self.local = local or LocalCache(clock=clock)
        self.remote = remote
        self.clock = clock
        if retention is None:
            retention = {Namespace.SNAPSHOT: settings.snapshot_stale_retention_seconds}
        self.retention = retention

    async def lookup(
        self,
        namespace: Namespace,
        key: str,
        allow_stale: bool = False,
    ) -> Tuple[Optional[CacheEntry], CacheStatus]:
        """
        Read an entry and report which tier served it.

        Expired entries are treated as absent unless ``allow_stale`` is set.
        """
        entry = self.local.get(namespace, key, allow_stale=allow_stale)
        if entry is not None:
            return entry, CacheStatus.MEMORY

        if self.remote is None:
            return None, CacheStatus.MISS

        entry = await asyncio.to_thread(self.remote.get, namespace, key)
        if entry is None:
            return None, CacheStatus.MISS
        if entry.is_expired(self.clock()) and not allow_stale:
            return None, CacheStatus.MISS

        self.local.set(namespace, key, entry)
        return entry, CacheStatus.REDIS

    async def get(self, namespace: Namespace, key: str, allow_stale: bool = False) -> Optional[CacheEntry]:
        entry, _ = await self.lookup(namespace, key, allow_stale=allow_stale)
        return entry

    async def set(self, namespace: Namespace, key: str, value, ttl_seconds: float) -> CacheEntry:
        """
        Write a value to both tiers.

        Args:
            namespace: Target namespace
            key: Key within the namespace
            value: JSON-serializable value; treat it as immutable once stored
            ttl_seconds: Logical time to live

        Returns:
            The stored CacheEntry
        """
        now = self.clock()
        entry = CacheEntry(value=value, fetched_at=now, expires_at=now + ttl_seconds)
        self.local.set(namespace, key, entry)
        if self.remote is not None:
            physical_ttl = ttl_seconds + self.retention.get(namespace, 0)
            await asyncio.to_thread(self.remote.set, namespace, key, entry, physical_ttl)
        return entry

    async def delete(self, namespace: Namespace, key: str) -> None:
        self.local.delete(namespace, key)
        if self.remote is not None:
            await asyncio.to_thread(self.remote.delete, namespace, key)

    def stats(self) -> dict:
        local = {"local_entries": len(self.local)}
        if self.remote is None:
            return {"available": False, "error": "Redis connection unavailable", **local}
        return {**self.remote.stats(), **local}

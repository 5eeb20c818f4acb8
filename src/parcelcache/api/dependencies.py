"""
FastAPI Dependencies

Provides dependency injection for the process-wide parcel data service.
"""
from functools import lru_cache

from config.settings import settings
from src.parcelcache.cache.coalescer import Coalescer
from src.parcelcache.cache.store import CacheStore, LocalCache, RedisCache, get_redis_client
from src.parcelcache.clients.attom_client import AttomClient
from src.parcelcache.services.parcel_service import ParcelDataService
from src.parcelcache.services.rate_limiter import RateLimiter


@lru_cache(maxsize=1)
def get_parcel_service() -> ParcelDataService:
    """
    Parcel data service dependency.

    Built once per process so the coalescer registry, the in-process
    cache and the Redis connection are shared by every request.

    Returns:
        ParcelDataService
    """
    redis_client = get_redis_client()
    remote = RedisCache(redis_client) if redis_client is not None else None
    cache = CacheStore(
        local=LocalCache(max_entries=settings.local_cache_max_entries),
        remote=remote,
    )
    return ParcelDataService(
        client=AttomClient(),
        cache=cache,
        coalescer=Coalescer(),
        rate_limiter=RateLimiter(interval_ms=settings.map_rate_limit_ms),
        config=settings,
    )

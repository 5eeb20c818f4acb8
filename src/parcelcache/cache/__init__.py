"""
Cache Module

Two-tier cache store and request coalescing for upstream property data.
"""
from src.parcelcache.cache.coalescer import Coalescer
from src.parcelcache.cache.store import CacheStore, LocalCache, Namespace, RedisCache

__all__ = [
    "Coalescer",
    "CacheStore",
    "LocalCache",
    "Namespace",
    "RedisCache",
]

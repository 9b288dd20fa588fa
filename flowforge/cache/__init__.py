"""TTL cache for generated workflow results."""

from flowforge.cache.factory import build_cache_store
from flowforge.cache.fingerprint import generate_key, normalize_input
from flowforge.cache.models import CacheEntry, CacheStats, CleanupReport
from flowforge.cache.redis_backend import RedisCacheStore
from flowforge.cache.store import CacheStore, MemoryCacheStore
from flowforge.cache.sweeper import CacheSweeper

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "CacheSweeper",
    "CleanupReport",
    "MemoryCacheStore",
    "RedisCacheStore",
    "build_cache_store",
    "generate_key",
    "normalize_input",
]

"""Build the configured cache store."""

import logging
from typing import Optional

from flowforge.cache.redis_backend import RedisCacheStore
from flowforge.cache.store import CacheStore, MemoryCacheStore
from flowforge.clock import Clock
from flowforge.config import Settings
from flowforge.exceptions import ConfigurationError, StorageUnavailableError

logger = logging.getLogger(__name__)

BACKENDS = ("memory", "redis")


def build_cache_store(settings: Settings, clock: Optional[Clock] = None) -> CacheStore:
    """Create the store selected by ``settings.cache.backend``.

    An unreachable Redis falls back to the memory store unless
    ``settings.cache.strict`` is set.

    Raises:
        ConfigurationError: For an unknown backend name.
        StorageUnavailableError: Redis is unreachable and ``strict`` is set.
    """
    cache_cfg = settings.cache
    backend = cache_cfg.backend.lower()
    if backend not in BACKENDS:
        raise ConfigurationError(
            f"Unknown cache backend '{cache_cfg.backend}'; expected one of {BACKENDS}"
        )

    if backend == "redis":
        store = RedisCacheStore(
            redis_url=cache_cfg.redis_url,
            default_ttl_seconds=cache_cfg.default_ttl_seconds,
            key_prefix=cache_cfg.key_prefix,
            native_ttl_grace_seconds=cache_cfg.native_ttl_grace_seconds,
            clock=clock,
        )
        try:
            store.ping()
        except StorageUnavailableError:
            store.close()
            if cache_cfg.strict:
                raise
            logger.warning(
                "Redis cache unreachable, using in-memory cache",
                extra={"redis_url": "***"},
            )
        else:
            logger.info("Cache using Redis", extra={"key_prefix": cache_cfg.key_prefix})
            return store

    logger.info(
        "Cache using in-memory store",
        extra={"default_ttl_seconds": cache_cfg.default_ttl_seconds},
    )
    return MemoryCacheStore(
        default_ttl_seconds=cache_cfg.default_ttl_seconds,
        clock=clock,
    )

"""
Redis-backed cache store.

Implements the same interface as :class:`~flowforge.cache.store.MemoryCacheStore`
so the API and the sweeper can use either backend.  Several processes
may share one Redis database; Redis transactions supply the
serialization between them.

Keys:
    ``{prefix}:entry:{key}``            -> CacheEntry JSON (with a Redis TTL)
    ``{prefix}:meta:expired_removed``   -> count from the latest cleanup pass
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

import redis
from pydantic import ValidationError

from flowforge.cache.codec import ValueCodec
from flowforge.cache.models import CacheEntry, CacheStats, CleanupReport
from flowforge.cache.store import DEFAULT_TTL_SECONDS, CacheStore, build_stats
from flowforge.clock import Clock
from flowforge.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

_SCAN_BATCH = 500
DEFAULT_NATIVE_TTL_GRACE_SECONDS = 3600


class RedisCacheStore(CacheStore):
    """Cache store persisted in Redis.

    Expiry is decided by the store clock, exactly as in the memory
    store.  Every entry also carries a native Redis TTL of its own TTL
    plus ``native_ttl_grace_seconds``, so an expired entry stays visible to
    cleanup for that long and storage is still reclaimed if no cleanup
    ever runs.

    Args:
        redis_url: Redis connection URL (e.g. redis://localhost:6379/0).
        default_ttl_seconds: TTL applied when ``set`` is called without one.
        key_prefix: Namespace for every key this store touches.
        native_ttl_grace_seconds: Extra lifetime of the Redis key past the
            entry expiry.
        clock: Time source; defaults to the system clock.
        codec: Value serializer used for validation and size estimates.
    """

    backend_name = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        key_prefix: str = "flowforge:cache",
        native_ttl_grace_seconds: float = DEFAULT_NATIVE_TTL_GRACE_SECONDS,
        clock: Optional[Clock] = None,
        codec: Optional[ValueCodec] = None,
        _redis_client: Optional[Any] = None,
    ) -> None:
        super().__init__(default_ttl_seconds, clock=clock, codec=codec)
        if _redis_client is not None:
            self._client = _redis_client
        else:
            self._client = redis.from_url(redis_url, decode_responses=True)
        self._key_prefix = key_prefix.rstrip(":")
        self._native_ttl_grace_seconds = native_ttl_grace_seconds
        self._expired_removed_key = f"{self._key_prefix}:meta:expired_removed"
        self._closed = False

    # -- key helpers -------------------------------------------------------

    def _key(self, cache_key: str) -> str:
        """Return the full Redis key for a cache key."""
        return f"{self._key_prefix}:entry:{cache_key}"

    def _entry_keys(self) -> List[str]:
        return list(
            self._client.scan_iter(match=f"{self._key_prefix}:entry:*", count=_SCAN_BATCH)
        )

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        """Translate Redis failures into StorageUnavailableError."""
        if self._closed:
            raise StorageUnavailableError("Cache store has been closed")
        try:
            yield
        except redis.RedisError as exc:
            logger.error(
                "Redis %s failed",
                operation,
                extra={"operation": operation, "error": str(exc)},
            )
            raise StorageUnavailableError(f"Cache storage unavailable during {operation}") from exc

    @staticmethod
    def _decode(rkey: str, data: Any) -> Optional[CacheEntry]:
        """Parse stored JSON; ``None`` for a corrupted payload."""
        try:
            return CacheEntry.model_validate_json(data)
        except ValidationError as exc:
            logger.warning(
                "Redis entry deserialize failed",
                extra={"redis_key": rkey, "error": str(exc)},
            )
            return None

    # -- public API --------------------------------------------------------

    def ping(self) -> bool:
        """Check connectivity.

        Raises:
            StorageUnavailableError: If Redis cannot be reached.
        """
        with self._storage_errors("ping"):
            return bool(self._client.ping())

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        rkey = self._key(key)
        now = self._clock.now()

        def _read_and_count(pipe: Any) -> Optional[CacheEntry]:
            data = pipe.get(rkey)
            if data is None:
                return None
            entry = self._decode(rkey, data)
            pipe.multi()
            if entry is None:
                pipe.delete(rkey)
                return None
            if entry.is_expired(now):
                pipe.delete(rkey)
                logger.debug("Cache entry expired", extra={"cache_key": key})
                return None
            entry.record_hit(now)
            pipe.set(rkey, entry.model_dump_json(), keepttl=True)
            return entry

        with self._storage_errors("get"):
            entry = self._client.transaction(_read_and_count, rkey, value_from_callable=True)

        if entry is not None:
            logger.debug(
                "Cache hit",
                extra={"cache_key": key, "hit_count": entry.hit_count},
            )
        return entry

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CacheEntry:
        entry = self._new_entry(key, value, ttl_seconds, metadata)
        lifetime = (entry.expires_at - entry.created_at).total_seconds()
        ttl_ms = max(1, int((lifetime + self._native_ttl_grace_seconds) * 1000))
        with self._storage_errors("set"):
            self._client.set(self._key(key), entry.model_dump_json(), px=ttl_ms)
        logger.debug(
            "Cache set",
            extra={"cache_key": key, "expires_at": entry.expires_at.isoformat()},
        )
        return entry

    def invalidate(self, key: str) -> bool:
        with self._storage_errors("invalidate"):
            deleted = self._client.delete(self._key(key))
        if deleted:
            logger.info("Cache entry invalidated", extra={"cache_key": key})
        return bool(deleted)

    def clear(self) -> int:
        with self._storage_errors("clear"):
            keys = self._entry_keys()
            if keys:
                self._client.delete(*keys)
        logger.info("Cache cleared", extra={"entries_removed": len(keys)})
        return len(keys)

    def size(self) -> int:
        with self._storage_errors("size"):
            return len(self._entry_keys())

    def live_size(self) -> int:
        now = self._clock.now()
        with self._storage_errors("live_size"):
            return sum(1 for entry in self._load_entries() if not entry.is_expired(now))

    def cleanup(self) -> CleanupReport:
        now = self._clock.now()
        removed = 0
        kept: List[CacheEntry] = []

        with self._storage_errors("cleanup"):
            for rkey in self._entry_keys():
                was_removed, entry = self._client.transaction(
                    lambda pipe, rkey=rkey: self._sweep_one(pipe, rkey, now),
                    rkey,
                    value_from_callable=True,
                )
                if was_removed:
                    removed += 1
                elif entry is not None:
                    kept.append(entry)
            self._client.set(self._expired_removed_key, removed)

        if removed:
            logger.info(
                "Expired entries cleaned up",
                extra={"count": removed, "remaining": len(kept)},
            )
        return CleanupReport(
            removed_count=removed,
            remaining_count=len(kept),
            stats=build_stats(kept, now, removed),
        )

    def get_stats(self, platform: Optional[str] = None) -> CacheStats:
        now = self._clock.now()
        with self._storage_errors("stats"):
            entries = self._load_entries()
            expired_removed = int(self._client.get(self._expired_removed_key) or 0)
        return build_stats(entries, now, expired_removed, platform=platform)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._client.close()
        except redis.RedisError as exc:
            logger.warning("Redis close failed", extra={"error": str(exc)})
        logger.info("Redis cache store closed")

    # -- internals ---------------------------------------------------------

    def _sweep_one(
        self, pipe: Any, rkey: str, now: datetime
    ) -> Tuple[bool, Optional[CacheEntry]]:
        """Delete *rkey* if expired or corrupted.

        Returns ``(removed, kept_entry)``.  Runs inside a WATCH on *rkey*,
        so an entry rewritten concurrently is retried against its new
        contents rather than deleted.  A key that vanished after the scan
        (invalidated, or evicted by a read) is neither removed nor kept.
        """
        data = pipe.get(rkey)
        if data is None:
            return False, None
        entry = self._decode(rkey, data)
        pipe.multi()
        if entry is None or entry.is_expired(now):
            pipe.delete(rkey)
            return True, None
        return False, entry

    def _load_entries(self) -> List[CacheEntry]:
        keys = self._entry_keys()
        entries: List[CacheEntry] = []
        for start in range(0, len(keys), _SCAN_BATCH):
            batch = keys[start:start + _SCAN_BATCH]
            for rkey, data in zip(batch, self._client.mget(batch)):
                if data is None:
                    continue
                entry = self._decode(rkey, data)
                if entry is not None:
                    entries.append(entry)
        return entries

"""
TTL key/value cache store for generated workflow results.

Entries expire ``ttl_seconds`` after they are written.  Reads check
expiry themselves (lazy eviction), so callers never see stale data no
matter how often :meth:`CacheStore.cleanup` runs; the cleanup sweep only
reclaims storage and reports statistics.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

from flowforge.cache.codec import JsonCodec, ValueCodec, estimate_size
from flowforge.cache.models import (
    CacheEntry,
    CacheStats,
    CleanupReport,
    PlatformBreakdown,
)
from flowforge.clock import Clock, SystemClock
from flowforge.exceptions import InvalidArgumentError, StorageUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


def build_stats(
    entries: Iterable[CacheEntry],
    now: datetime,
    expired_removed: int = 0,
    platform: Optional[str] = None,
) -> CacheStats:
    """Aggregate statistics over the live entries in *entries*.

    Args:
        entries: Candidate entries; expired ones are skipped.
        now: Reference time for the expiry check.
        expired_removed: Count from the most recent cleanup pass.
        platform: When given, only entries for this platform are counted.

    Returns:
        The computed :class:`CacheStats`.
    """
    total_entries = 0
    total_hits = 0
    total_size = 0
    breakdown: Dict[str, PlatformBreakdown] = {}

    for entry in entries:
        if entry.is_expired(now):
            continue
        if platform is not None and entry.platform != platform:
            continue
        total_entries += 1
        total_hits += entry.hit_count
        total_size += entry.size_bytes
        slot = breakdown.setdefault(entry.platform, PlatformBreakdown())
        slot.count += 1
        slot.hits += entry.hit_count

    return CacheStats(
        total_entries=total_entries,
        expired_removed=expired_removed,
        total_hits=total_hits,
        approximate_size_bytes=total_size,
        avg_hits_per_entry=total_hits / total_entries if total_entries else 0.0,
        platform_breakdown=breakdown,
    )


class CacheStore(ABC):
    """Common contract and argument handling for cache stores.

    Args:
        default_ttl_seconds: TTL applied when ``set`` is called without one.
        clock: Time source; defaults to the system clock.
        codec: Value serializer used for validation and size estimates.
    """

    backend_name = "abstract"

    def __init__(
        self,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Optional[Clock] = None,
        codec: Optional[ValueCodec] = None,
    ) -> None:
        if default_ttl_seconds <= 0:
            raise InvalidArgumentError("default_ttl_seconds must be positive")
        self._default_ttl_seconds = default_ttl_seconds
        self._clock: Clock = clock or SystemClock()
        self._codec: ValueCodec = codec or JsonCodec()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def default_ttl_seconds(self) -> int:
        return self._default_ttl_seconds

    # -- public API --------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` on a miss.

        A hit increments the entry's ``hit_count`` and refreshes
        ``last_accessed_at``.  An expired entry is removed and reported
        as a miss.
        """
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    @abstractmethod
    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Like :meth:`get` but return a copy of the updated entry."""

    @abstractmethod
    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CacheEntry:
        """Insert or overwrite an entry with a fresh TTL and zero hits.

        Raises:
            InvalidArgumentError: If the key is blank, the TTL is not
                positive, or the value cannot be serialized.
        """

    @abstractmethod
    def invalidate(self, key: str) -> bool:
        """Remove an entry regardless of expiry.  Returns False if absent."""

    @abstractmethod
    def clear(self) -> int:
        """Remove every entry and return how many were removed."""

    @abstractmethod
    def size(self) -> int:
        """Entries physically held, including expired-but-unswept ones."""

    @abstractmethod
    def live_size(self) -> int:
        """Entries that have not yet expired."""

    @abstractmethod
    def cleanup(self) -> CleanupReport:
        """Remove every expired entry and report what is left."""

    @abstractmethod
    def get_stats(self, platform: Optional[str] = None) -> CacheStats:
        """Aggregate statistics over live entries.  Never mutates entries."""

    @abstractmethod
    def close(self) -> None:
        """Release resources; the store is unusable afterwards."""

    # -- helpers for implementations ---------------------------------------

    def _new_entry(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float],
        metadata: Optional[Dict[str, Any]],
    ) -> CacheEntry:
        """Validate arguments and build a fresh entry stamped with ``now``."""
        if not isinstance(key, str) or not key.strip():
            raise InvalidArgumentError("Cache key must not be empty")
        ttl = self._default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl <= 0:
            raise InvalidArgumentError(
                f"ttl_seconds must be a positive number, got {ttl_seconds!r}"
            )
        size = estimate_size(self._codec, value)
        if metadata is not None:
            estimate_size(self._codec, metadata)

        now = self._clock.now()
        return CacheEntry(
            key=key,
            value=value,
            metadata=dict(metadata or {}),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
            last_accessed_at=now,
            hit_count=0,
            size_bytes=size,
        )


class MemoryCacheStore(CacheStore):
    """In-process cache store.

    Thread-safe: every operation, including hit accounting inside
    :meth:`get_entry` and the full scan in :meth:`cleanup`, holds
    ``_lock``.  Entries are handed out as copies so callers can never
    observe or cause a partial update.
    """

    backend_name = "memory"

    def __init__(
        self,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Optional[Clock] = None,
        codec: Optional[ValueCodec] = None,
    ) -> None:
        super().__init__(default_ttl_seconds, clock=clock, codec=codec)
        self._store: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._expired_removed: int = 0
        self._closed = False

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            self._ensure_open()
            entry = self._store.get(key)
            if entry is None:
                return None

            now = self._clock.now()
            if entry.is_expired(now):
                del self._store[key]
                logger.debug("Cache entry expired", extra={"cache_key": key})
                return None

            entry.record_hit(now)
            logger.debug(
                "Cache hit",
                extra={"cache_key": key, "hit_count": entry.hit_count},
            )
            return entry.model_copy(deep=True)

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CacheEntry:
        entry = self._new_entry(key, value, ttl_seconds, metadata)
        with self._lock:
            self._ensure_open()
            # the caller keeps its own value and metadata objects
            entry = entry.model_copy(deep=True)
            self._store[key] = entry
            logger.debug(
                "Cache set",
                extra={"cache_key": key, "expires_at": entry.expires_at.isoformat()},
            )
            return entry.model_copy(deep=True)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            self._ensure_open()
            if self._store.pop(key, None) is None:
                return False
        logger.info("Cache entry invalidated", extra={"cache_key": key})
        return True

    def clear(self) -> int:
        with self._lock:
            self._ensure_open()
            count = len(self._store)
            self._store.clear()
        logger.info("Cache cleared", extra={"entries_removed": count})
        return count

    def size(self) -> int:
        with self._lock:
            self._ensure_open()
            return len(self._store)

    def live_size(self) -> int:
        with self._lock:
            self._ensure_open()
            now = self._clock.now()
            return sum(1 for entry in self._store.values() if not entry.is_expired(now))

    def cleanup(self) -> CleanupReport:
        with self._lock:
            self._ensure_open()
            now = self._clock.now()
            expired_keys = [
                key for key, entry in self._store.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._store[key]
            self._expired_removed = len(expired_keys)
            stats = build_stats(self._store.values(), now, self._expired_removed)
            remaining = len(self._store)

        if expired_keys:
            logger.info(
                "Expired entries cleaned up",
                extra={"count": len(expired_keys), "remaining": remaining},
            )
        return CleanupReport(
            removed_count=len(expired_keys),
            remaining_count=remaining,
            stats=stats,
        )

    def get_stats(self, platform: Optional[str] = None) -> CacheStats:
        with self._lock:
            self._ensure_open()
            return build_stats(
                self._store.values(),
                self._clock.now(),
                self._expired_removed,
                platform=platform,
            )

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            count = len(self._store)
            self._store.clear()
            self._closed = True
        logger.info("Memory cache store closed", extra={"entries_dropped": count})

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageUnavailableError("Cache store has been closed")

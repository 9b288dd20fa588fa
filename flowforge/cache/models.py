"""
Data models shared by every cache store implementation.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel):
    """A single cached artifact (e.g. a generated workflow result).

    Attributes:
        key: Fingerprint identifying the cached request.
        value: Opaque JSON-serializable payload.
        metadata: Producer-supplied descriptive data (``platform`` etc.).
        created_at: UTC timestamp when the entry was stored.
        expires_at: UTC timestamp after which the entry is stale.
        last_accessed_at: UTC timestamp of the most recent successful read.
        hit_count: Number of successful reads.
        size_bytes: Serialized size of ``value``.
    """

    key: str
    value: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime = Field(default_factory=_utcnow)
    last_accessed_at: datetime = Field(default_factory=_utcnow)
    hit_count: int = Field(default=0, ge=0)
    size_bytes: int = Field(default=0, ge=0)

    @property
    def platform(self) -> str:
        """Platform the entry was generated for, ``"unknown"`` if not set."""
        platform = self.metadata.get("platform")
        return str(platform) if platform else "unknown"

    def is_expired(self, now: datetime) -> bool:
        """Return True once ``now`` has reached ``expires_at``."""
        return self.expires_at <= now

    def record_hit(self, now: datetime) -> None:
        """Account for one successful read.

        ``last_accessed_at`` never moves backwards, even if the clock does.
        """
        self.hit_count += 1
        if now > self.last_accessed_at:
            self.last_accessed_at = now


class PlatformBreakdown(BaseModel):
    """Per-platform slice of the cache statistics."""

    count: int = 0
    hits: int = 0


class CacheStats(BaseModel):
    """Aggregate view over the live (non-expired) entries.

    Attributes:
        total_entries: Number of live entries.
        expired_removed: Entries removed by the most recent cleanup pass.
        total_hits: Sum of ``hit_count`` across live entries.
        approximate_size_bytes: Sum of serialized value sizes.
        avg_hits_per_entry: ``total_hits / total_entries`` (0.0 if empty).
        platform_breakdown: Entry and hit counts per platform.
    """

    total_entries: int = 0
    expired_removed: int = 0
    total_hits: int = 0
    approximate_size_bytes: int = 0
    avg_hits_per_entry: float = 0.0
    platform_breakdown: Dict[str, PlatformBreakdown] = Field(default_factory=dict)


class CleanupReport(BaseModel):
    """Outcome of one cleanup pass.

    ``stats`` is computed from the same scan, so it reflects exactly the
    entries that survived the pass.
    """

    removed_count: int = 0
    remaining_count: int = 0
    stats: CacheStats = Field(default_factory=CacheStats)

"""
Tests for the in-memory TTL cache store.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from flowforge.cache import CacheEntry, CacheStats, CleanupReport, MemoryCacheStore
from flowforge.clock import ManualClock
from flowforge.exceptions import InvalidArgumentError, StorageUnavailableError

T0 = datetime(2025, 6, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def cache(clock: ManualClock) -> MemoryCacheStore:
    return MemoryCacheStore(default_ttl_seconds=3600, clock=clock)


class TestCacheEntry:
    """Tests for the CacheEntry model."""

    def test_create_entry_defaults(self) -> None:
        entry = CacheEntry(key="abc123", value={"x": 1})
        assert entry.hit_count == 0
        assert entry.metadata == {}
        assert isinstance(entry.created_at, datetime)

    def test_platform_defaults_to_unknown(self) -> None:
        assert CacheEntry(key="k").platform == "unknown"
        assert CacheEntry(key="k", metadata={"platform": "n8n"}).platform == "n8n"

    def test_is_expired_at_boundary(self) -> None:
        entry = CacheEntry(key="k", created_at=T0, expires_at=T0 + timedelta(seconds=10))
        assert not entry.is_expired(T0 + timedelta(seconds=9))
        assert entry.is_expired(T0 + timedelta(seconds=10))

    def test_record_hit_never_moves_last_access_backwards(self) -> None:
        entry = CacheEntry(key="k", created_at=T0, last_accessed_at=T0)
        entry.record_hit(T0 - timedelta(seconds=5))
        assert entry.hit_count == 1
        assert entry.last_accessed_at == T0


class TestGetSet:
    def test_set_then_get_counts_one_hit(self, cache: MemoryCacheStore) -> None:
        created = cache.set("k", {"x": 1}, ttl_seconds=60)
        entry = cache.get_entry("k")
        assert entry is not None
        assert entry.value == {"x": 1}
        assert entry.hit_count == 1
        assert entry.last_accessed_at >= created.created_at

    def test_get_returns_value(self, cache: MemoryCacheStore) -> None:
        cache.set("k", ["a", "b"], ttl_seconds=60)
        assert cache.get("k") == ["a", "b"]

    def test_get_miss_is_none(self, cache: MemoryCacheStore) -> None:
        assert cache.get("nonexistent") is None

    def test_get_updates_last_accessed(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("k", 1, ttl_seconds=60)
        clock.advance(5)
        entry = cache.get_entry("k")
        assert entry is not None
        assert entry.last_accessed_at == T0 + timedelta(seconds=5)

    def test_three_reads_give_three_hits(self, cache: MemoryCacheStore) -> None:
        cache.set("b", {"x": 2}, ttl_seconds=100)
        cache.get("b")
        cache.get("b")
        entry = cache.get_entry("b")
        assert entry is not None
        assert entry.hit_count == 3
        assert cache.get_stats().total_hits >= 3

    def test_returned_entry_is_a_copy(self, cache: MemoryCacheStore) -> None:
        cache.set("k", {"x": 1}, ttl_seconds=60)
        entry = cache.get_entry("k")
        assert entry is not None
        entry.value["x"] = 99
        entry.hit_count = 50
        again = cache.get_entry("k")
        assert again is not None
        assert again.value == {"x": 1}
        assert again.hit_count == 2

    def test_stored_value_is_a_copy(self, cache: MemoryCacheStore) -> None:
        payload = {"nodes": [0]}
        tags = {"platform": "n8n", "tags": ["rss"]}
        cache.set("k", payload, ttl_seconds=60, metadata=tags)
        size_before = cache.get_stats().approximate_size_bytes

        payload["nodes"].extend(range(1000))
        tags["tags"].append("slack")

        entry = cache.get_entry("k")
        assert entry is not None
        assert entry.value == {"nodes": [0]}
        assert entry.metadata == {"platform": "n8n", "tags": ["rss"]}
        assert cache.get_stats().approximate_size_bytes == size_before

    def test_default_ttl_applied(self, cache: MemoryCacheStore) -> None:
        entry = cache.set("k", 1)
        assert entry.expires_at - entry.created_at == timedelta(seconds=3600)

    def test_overwrite_resets_entry(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("k", "old", ttl_seconds=10)
        cache.get("k")
        cache.get("k")
        clock.advance(5)
        fresh = cache.set("k", "new", ttl_seconds=10)
        assert fresh.created_at == T0 + timedelta(seconds=5)
        assert fresh.hit_count == 0
        entry = cache.get_entry("k")
        assert entry is not None
        assert entry.value == "new"
        assert entry.hit_count == 1
        assert entry.expires_at == T0 + timedelta(seconds=15)

    def test_metadata_is_kept(self, cache: MemoryCacheStore) -> None:
        cache.set("k", 1, ttl_seconds=60, metadata={"platform": "zapier"})
        entry = cache.get_entry("k")
        assert entry is not None
        assert entry.metadata == {"platform": "zapier"}

    def test_fractional_ttl(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("k", 1, ttl_seconds=0.5)
        clock.advance(0.4)
        assert cache.get("k") == 1
        clock.advance(0.1)
        assert cache.get("k") is None


class TestValidation:
    @pytest.mark.parametrize("ttl", [0, -1, -0.5])
    def test_non_positive_ttl_rejected(self, cache: MemoryCacheStore, ttl: float) -> None:
        with pytest.raises(InvalidArgumentError, match="ttl_seconds"):
            cache.set("k", 1, ttl_seconds=ttl)
        assert cache.size() == 0

    def test_invalid_argument_is_a_value_error(self, cache: MemoryCacheStore) -> None:
        with pytest.raises(ValueError):
            cache.set("k", 1, ttl_seconds=0)

    @pytest.mark.parametrize("key", ["", "   "])
    def test_blank_key_rejected(self, cache: MemoryCacheStore, key: str) -> None:
        with pytest.raises(InvalidArgumentError, match="must not be empty"):
            cache.set(key, 1, ttl_seconds=60)

    def test_unserializable_value_rejected(self, cache: MemoryCacheStore) -> None:
        with pytest.raises(InvalidArgumentError, match="not JSON-serializable"):
            cache.set("k", object(), ttl_seconds=60)
        assert cache.get("k") is None

    def test_non_positive_default_ttl_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError):
            MemoryCacheStore(default_ttl_seconds=0)


class TestExpiry:
    def test_expired_entry_is_a_miss(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("a", {"x": 1}, ttl_seconds=1)
        clock.advance(2)
        assert cache.get("a") is None

    def test_expired_read_removes_entry(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("a", {"x": 1}, ttl_seconds=1)
        clock.advance(2)
        assert cache.size() == 1
        cache.get("a")
        assert cache.size() == 0
        assert cache.cleanup().removed_count == 0

    def test_expired_at_exact_deadline(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("a", 1, ttl_seconds=10)
        clock.advance(10)
        assert cache.get("a") is None

    def test_size_vs_live_size(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("short", 1, ttl_seconds=1)
        cache.set("long", 2, ttl_seconds=100)
        clock.advance(2)
        assert cache.size() == 2
        assert cache.live_size() == 1


class TestInvalidateAndClear:
    def test_invalidate_existing(self, cache: MemoryCacheStore) -> None:
        cache.set("k", 1, ttl_seconds=60)
        assert cache.invalidate("k") is True
        assert cache.get("k") is None

    def test_invalidate_expired_entry(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("k", 1, ttl_seconds=1)
        clock.advance(5)
        assert cache.invalidate("k") is True
        assert cache.size() == 0

    def test_invalidate_nonexistent(self, cache: MemoryCacheStore) -> None:
        assert cache.invalidate("nonexistent") is False

    def test_clear(self, cache: MemoryCacheStore) -> None:
        cache.set("q1", 1, ttl_seconds=60)
        cache.set("q2", 2, ttl_seconds=60)
        assert cache.clear() == 2
        assert cache.size() == 0


class TestCleanup:
    def test_cleanup_empty_store(self, cache: MemoryCacheStore) -> None:
        report = cache.cleanup()
        assert isinstance(report, CleanupReport)
        assert report.removed_count == 0
        assert report.remaining_count == 0
        assert report.stats.total_entries == 0

    def test_cleanup_removes_expired_scenario(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("a", {"x": 1}, ttl_seconds=1)
        clock.advance(2)
        report = cache.cleanup()
        assert report.removed_count == 1
        assert report.remaining_count == 0

    def test_cleanup_keeps_unexpired(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("old1", 1, ttl_seconds=1)
        cache.set("old2", 2, ttl_seconds=2)
        cache.set("fresh", 3, ttl_seconds=100)
        clock.advance(3)
        live_before = cache.live_size()
        total_before = cache.size()

        report = cache.cleanup()

        assert report.removed_count == 2
        assert report.remaining_count == 1
        assert report.removed_count + report.remaining_count == total_before
        assert cache.get_stats().total_entries == live_before
        assert cache.get("fresh") == 3

    def test_cleanup_is_idempotent(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("a", 1, ttl_seconds=1)
        cache.set("b", 2, ttl_seconds=100)
        clock.advance(2)
        assert cache.cleanup().removed_count == 1
        second = cache.cleanup()
        assert second.removed_count == 0
        assert second.remaining_count == 1

    def test_cleanup_report_includes_stats(self, cache: MemoryCacheStore, clock: ManualClock) -> None:
        cache.set("a", 1, ttl_seconds=1)
        cache.set("b", 2, ttl_seconds=100)
        cache.get("b")
        clock.advance(2)
        report = cache.cleanup()
        assert report.stats.total_entries == 1
        assert report.stats.total_hits == 1
        assert report.stats.expired_removed == 1

    def test_cleanup_does_not_touch_hit_counts(self, cache: MemoryCacheStore) -> None:
        cache.set("a", 1, ttl_seconds=100)
        cache.get("a")
        cache.cleanup()
        entry = cache.get_entry("a")
        assert entry is not None
        assert entry.hit_count == 2


class TestStats:
    def test_stats_empty(self, cache: MemoryCacheStore) -> None:
        stats = cache.get_stats()
        assert isinstance(stats, CacheStats)
        assert stats.total_entries == 0
        assert stats.total_hits == 0
        assert stats.avg_hits_per_entry == 0.0
        assert stats.approximate_size_bytes == 0
        assert stats.platform_breakdown == {}

    def test_stats_aggregate(self, cache: MemoryCacheStore) -> None:
        cache.set("a", {"x": 1}, ttl_seconds=60, metadata={"platform": "n8n"})
        cache.set("b", "yz", ttl_seconds=60, metadata={"platform": "make"})
        cache.set("c", 5, ttl_seconds=60)
        cache.get("a")
        cache.get("a")
        cache.get("b")

        stats = cache.get_stats()
        assert stats.total_entries == 3
        assert stats.total_hits == 3
        assert stats.avg_hits_per_entry == pytest.approx(1.0)
        # {"x":1} -> 7 bytes, "yz" -> 4 bytes, 5 -> 1 byte
        assert stats.approximate_size_bytes == 12
        assert stats.platform_breakdown["n8n"].count == 1
        assert stats.platform_breakdown["n8n"].hits == 2
        assert stats.platform_breakdown["make"].hits == 1
        assert stats.platform_breakdown["unknown"].count == 1

    def test_stats_platform_filter(self, cache: MemoryCacheStore) -> None:
        cache.set("a", 1, ttl_seconds=60, metadata={"platform": "n8n"})
        cache.set("b", 2, ttl_seconds=60, metadata={"platform": "zapier"})
        stats = cache.get_stats(platform="zapier")
        assert stats.total_entries == 1
        assert list(stats.platform_breakdown) == ["zapier"]

    def test_stats_excludes_expired_without_removing(
        self, cache: MemoryCacheStore, clock: ManualClock
    ) -> None:
        cache.set("a", 1, ttl_seconds=1)
        cache.set("b", 2, ttl_seconds=100)
        clock.advance(2)
        stats = cache.get_stats()
        assert stats.total_entries == 1
        assert cache.size() == 2

    def test_stats_is_read_only(self, cache: MemoryCacheStore) -> None:
        cache.set("a", 1, ttl_seconds=60)
        cache.get_stats()
        cache.get_stats()
        entry = cache.get_entry("a")
        assert entry is not None
        assert entry.hit_count == 1

    def test_expired_removed_tracks_latest_cleanup(
        self, cache: MemoryCacheStore, clock: ManualClock
    ) -> None:
        assert cache.get_stats().expired_removed == 0
        cache.set("a", 1, ttl_seconds=1)
        clock.advance(2)
        cache.cleanup()
        assert cache.get_stats().expired_removed == 1
        cache.cleanup()
        assert cache.get_stats().expired_removed == 0


class TestClose:
    def test_closed_store_reports_unavailable(self, cache: MemoryCacheStore) -> None:
        cache.set("a", 1, ttl_seconds=60)
        cache.close()
        with pytest.raises(StorageUnavailableError):
            cache.get("a")
        with pytest.raises(StorageUnavailableError):
            cache.cleanup()
        with pytest.raises(StorageUnavailableError):
            cache.get_stats()

    def test_close_is_idempotent(self, cache: MemoryCacheStore) -> None:
        cache.close()
        cache.close()


class TestConcurrency:
    def test_concurrent_reads_count_every_hit(self, cache: MemoryCacheStore) -> None:
        cache.set("hot", {"x": 1}, ttl_seconds=600)
        threads = [
            threading.Thread(target=lambda: [cache.get("hot") for _ in range(200)])
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.get_stats().total_hits == 1600

    def test_cleanup_during_writes_never_drops_live_entries(
        self, cache: MemoryCacheStore, clock: ManualClock
    ) -> None:
        for i in range(50):
            cache.set(f"old-{i}", i, ttl_seconds=1)
        clock.advance(2)

        errors = []

        def writer() -> None:
            try:
                for i in range(300):
                    cache.set(f"new-{i}", i, ttl_seconds=600)
                    cache.get(f"new-{i}")
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        def sweeper() -> None:
            try:
                for _ in range(50):
                    cache.cleanup()
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=writer), threading.Thread(target=sweeper)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert cache.live_size() == 300
        assert all(cache.get(f"new-{i}") == i for i in range(300))
        assert cache.cleanup().remaining_count == 300

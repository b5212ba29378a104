"""
Tests for the tiered cache facade.
"""
import pytest

from decocache.cache import (
    MISS,
    DurableTier,
    FastTier,
    MemoryStorage,
    TieredCache,
    build_tiered_cache,
)
from config.settings import Settings


class TestTieredCache:
    def test_set_writes_both_tiers(self, cache):
        cache.set("k", {"v": 1}, 60)

        assert cache.fast_tier.get("k") == {"v": 1}
        assert cache.durable_tier.get("k") == {"v": 1}

    def test_default_ttl(self, cache, clock):
        cache.set("k", 1)
        clock.advance(3599)
        assert cache.get("k") == 1
        clock.advance(2)
        assert cache.get("k") is MISS

    def test_memory_hit_first(self, cache):
        cache.set("k", 1, 60)
        assert cache.get("k") == 1
        assert cache.get_stats()["hits_memory"] == 1

    def test_durable_hit_backfills_memory_with_same_entry(self, cache, clock):
        cache.set("k", "v", 10)
        stored_at = cache.durable_tier.get_entry("k").stored_at
        cache.fast_tier.clear()
        clock.advance(5)

        assert cache.get("k") == "v"
        backfilled = cache.fast_tier.get_entry("k")
        assert backfilled.stored_at == stored_at
        assert backfilled.ttl_seconds == 10
        assert cache.get_stats()["hits_durable"] == 1

    def test_backfilled_entry_expires_with_original(self, cache, clock):
        cache.set("k", "v", 10)
        cache.fast_tier.clear()
        clock.advance(5)
        cache.get("k")
        clock.advance(6)

        assert cache.get("k") is MISS

    def test_ttl_expiry_across_tiers(self, cache, clock):
        cache.set("k", "v", 1)
        clock.advance(2)
        assert cache.get("k") is MISS

    def test_delete_propagates(self, cache):
        cache.set("k", 1, 60)
        cache.delete("k")

        assert cache.fast_tier.get("k") is MISS
        assert cache.durable_tier.get("k") is MISS

    def test_clear_counts_both_tiers(self, cache):
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)
        assert cache.clear() == 4
        assert cache.get("a") is MISS

    def test_clean_expired(self, cache, clock):
        cache.set("short", 1, 1)
        cache.set("long", 2, 100)
        clock.advance(5)

        assert cache.clean_expired() == 2
        assert cache.get("long") == 2

    def test_stats(self, cache):
        cache.set("k", 1, 60)
        cache.get("k")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["writes"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 50.0
        assert stats["memory"]["entries"] == 1
        assert stats["durable"]["entries"] == 1


class TestTierFlags:
    def test_fully_disabled_is_pass_through(self, clock):
        cache = TieredCache(
            fast_tier=FastTier(clock=clock),
            durable_tier=DurableTier(MemoryStorage(), clock=clock),
            enable_memory=False,
            enable_durable=False,
        )
        cache.set("k", 1, 60)

        assert cache.get("k") is MISS
        assert cache.enabled is False

    def test_memory_only(self, clock):
        storage = MemoryStorage()
        cache = TieredCache(
            fast_tier=FastTier(clock=clock),
            durable_tier=DurableTier(storage, clock=clock),
            enable_durable=False,
        )
        cache.set("k", 1, 60)

        assert cache.get("k") == 1
        assert storage.keys() == []
        assert cache.get_stats()["durable"] is None

    def test_durable_only_does_not_backfill(self, clock):
        fast = FastTier(clock=clock)
        cache = TieredCache(
            fast_tier=fast,
            durable_tier=DurableTier(MemoryStorage(), clock=clock),
            enable_memory=False,
        )
        cache.set("k", 1, 60)

        assert cache.get("k") == 1
        assert fast.size == 0


class TestBuildTieredCache:
    def test_from_settings(self):
        cache = build_tiered_cache(Settings(
            cache_durable_url="memory://",
            cache_max_memory_entries=7,
            cache_default_ttl_seconds=120,
            cache_durable_prefix="test-cache:",
        ))

        assert cache.fast_tier.max_entries == 7
        assert cache.default_ttl_seconds == 120
        assert cache.durable_tier.prefix == "test-cache:"
        assert cache.enable_durable is True

    def test_sqlite_store(self, tmp_path):
        cache = build_tiered_cache(Settings(cache_durable_url=f"sqlite:///{tmp_path / 'c.db'}"))
        cache.set("k", [1, 2], 60)
        cache.fast_tier.clear()

        assert cache.get("k") == [1, 2]

    def test_unusable_store_falls_back_to_memory_only(self):
        cache = build_tiered_cache(Settings(cache_durable_url="nosuchdialect://nowhere"))

        assert cache.enable_durable is False
        cache.set("k", 1, 60)
        assert cache.get("k") == 1

    def test_zero_memory_entries_rejected(self):
        with pytest.raises(ValueError):
            build_tiered_cache(Settings(cache_durable_url="memory://", cache_max_memory_entries=0))

    def test_durable_disabled_by_settings(self):
        cache = build_tiered_cache(Settings(cache_durable_enabled=False))
        assert cache.enable_durable is False

"""
Tiered cache facade: fast in-process tier in front of a durable tier.
"""
import logging
from typing import Any, Dict, Optional

from .core import MISS
from .durable import DEFAULT_PREFIX, DurableTier, MemoryStorage, StorageError, open_storage
from .fast_tier import FastTier

logger = logging.getLogger("cache.tiered")

DEFAULT_TTL_SECONDS = 3600


class TieredCache:
    """
    One get/set/delete/clear API over FastTier and DurableTier.

    - get: FastTier first, then DurableTier; a durable hit is copied back
      into FastTier with its original timestamp and TTL
    - set/delete/clear: applied to every enabled tier
    - with both tiers disabled every get is a miss

    Meant to be built once per process and handed to every coordinator.
    """

    def __init__(
        self,
        fast_tier: Optional[FastTier] = None,
        durable_tier: Optional[DurableTier] = None,
        enable_memory: bool = True,
        enable_durable: bool = True,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ):
        self.fast_tier = fast_tier if fast_tier is not None else FastTier()
        self.durable_tier = (
            durable_tier if durable_tier is not None else DurableTier(MemoryStorage())
        )
        self.enable_memory = enable_memory
        self.enable_durable = enable_durable
        self.default_ttl_seconds = default_ttl_seconds

        self._stats = {
            "hits_memory": 0,
            "hits_durable": 0,
            "misses": 0,
            "writes": 0,
        }

    def get(self, key: str) -> Any:
        """
        Look a key up through the tiers.

        Returns:
            The cached value, or MISS
        """
        if self.enable_memory:
            entry = self.fast_tier.get_entry(key)
            if entry is not None:
                logger.debug(f"CACHE HIT (memory): {key}")
                self._stats["hits_memory"] += 1
                return entry.value

        if self.enable_durable:
            entry = self.durable_tier.get_entry(key)
            if entry is not None:
                logger.debug(f"CACHE HIT (durable): {key}")
                self._stats["hits_durable"] += 1
                if self.enable_memory:
                    self.fast_tier.set_entry(key, entry)
                return entry.value

        logger.debug(f"CACHE MISS: {key}")
        self._stats["misses"] += 1
        return MISS

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if self.enable_memory:
            self.fast_tier.set(key, value, ttl)
        if self.enable_durable:
            self.durable_tier.set(key, value, ttl)
        self._stats["writes"] += 1

    def delete(self, key: str) -> None:
        if self.enable_memory:
            self.fast_tier.delete(key)
        if self.enable_durable:
            self.durable_tier.delete(key)
        logger.info(f"Invalidated cache: {key}")

    def clear(self) -> int:
        """
        Clear all enabled tiers.

        Returns:
            Number of entries removed across tiers
        """
        count = 0
        if self.enable_memory:
            count += self.fast_tier.clear()
        if self.enable_durable:
            count += self.durable_tier.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def clean_expired(self) -> int:
        """Drop expired entries from every enabled tier. Returns count."""
        removed = 0
        if self.enable_memory:
            removed += self.fast_tier.purge_expired()
        if self.enable_durable:
            removed += self.durable_tier.sweep()
        return removed

    @property
    def enabled(self) -> bool:
        return self.enable_memory or self.enable_durable

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        hits = self._stats["hits_memory"] + self._stats["hits_durable"]
        total = hits + self._stats["misses"]
        hit_rate = (hits / total * 100) if total > 0 else 0

        return {
            **self._stats,
            "hit_rate_percent": round(hit_rate, 1),
            "memory": self.fast_tier.get_stats() if self.enable_memory else None,
            "durable": self.durable_tier.get_stats() if self.enable_durable else None,
        }


def build_tiered_cache(settings) -> TieredCache:
    """
    Build the process-wide cache from Settings.

    A durable store that cannot be opened disables the durable tier
    instead of failing startup.
    """
    enable_durable = settings.cache_durable_enabled
    durable_tier = None
    if enable_durable:
        try:
            storage = open_storage(
                settings.cache_durable_url,
                quota_bytes=settings.cache_durable_quota_bytes,
            )
            durable_tier = DurableTier(storage, prefix=settings.cache_durable_prefix or DEFAULT_PREFIX)
        except StorageError as e:
            logger.warning(f"Durable cache unavailable, continuing memory-only: {e}")
            enable_durable = False

    cache = TieredCache(
        fast_tier=FastTier(max_entries=settings.cache_max_memory_entries),
        durable_tier=durable_tier,
        enable_memory=settings.cache_memory_enabled,
        enable_durable=enable_durable,
        default_ttl_seconds=settings.cache_default_ttl_seconds,
    )

    if enable_durable and settings.cache_sweep_on_start:
        cache.durable_tier.sweep()

    logger.info(
        f"Tiered cache ready (memory={cache.enable_memory}, durable={cache.enable_durable})"
    )
    return cache

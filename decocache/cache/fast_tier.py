"""
In-process cache tier: bounded LRU with per-entry TTL.
"""
import logging
import time
from collections import OrderedDict
from typing import Any, Dict, Optional

from .core import MISS, CacheEntry, Clock

logger = logging.getLogger("cache.fast_tier")

DEFAULT_MAX_ENTRIES = 100


class FastTier:
    """
    Bounded least-recently-used cache with lazy TTL expiry.

    Recency is the order of the underlying OrderedDict: every get hit and
    every set moves the key to the end, eviction pops from the front.
    Volatile, lost when the process exits.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, clock: Optional[Clock] = None):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._clock = clock or time.time
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.evictions = 0

    def get(self, key: str) -> Any:
        """Return the stored value, or MISS if absent or expired."""
        entry = self.get_entry(key)
        return MISS if entry is None else entry.value

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._store.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            del self._store[key]
            logger.debug(f"Expired: {key}")
            return None

        self._store.move_to_end(key)
        return entry

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self.set_entry(key, CacheEntry(value=value, stored_at=self._clock(), ttl_seconds=ttl_seconds))

    def set_entry(self, key: str, entry: CacheEntry) -> None:
        """Store a prebuilt entry, keeping its original timestamp."""
        if key in self._store:
            self._store.move_to_end(key)
        elif len(self._store) >= self.max_entries:
            evicted, _ = self._store.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted LRU entry: {evicted}")
        self._store[key] = entry

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._store)
        self._store.clear()
        return count

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns number removed."""
        now = self._clock()
        expired = [k for k, entry in self._store.items() if entry.is_expired(now)]
        for key in expired:
            del self._store[key]
        return len(expired)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    @property
    def size(self) -> int:
        return len(self._store)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._store),
            "max_entries": self.max_entries,
            "evictions": self.evictions,
        }

"""
Tiered caching with race-safe, debounced fetch coordination.
"""
from .core import MISS, CacheEntry, FetchResult, FetchState
from .keys import build_key, dependency_snapshot
from .fast_tier import FastTier
from .durable import (
    DurableTier,
    KeyValueStorage,
    MemoryStorage,
    SqlStorage,
    StorageError,
    StorageQuotaExceeded,
    open_storage,
)
from .tiered import TieredCache, build_tiered_cache
from .coalescer import RequestCoalescer
from .coordinator import FetchCoordinator, FetchOptions

__all__ = [
    # Core types
    "MISS",
    "CacheEntry",
    "FetchResult",
    "FetchState",
    # Keys
    "build_key",
    "dependency_snapshot",
    # Tiers
    "FastTier",
    "DurableTier",
    "KeyValueStorage",
    "MemoryStorage",
    "SqlStorage",
    "StorageError",
    "StorageQuotaExceeded",
    "open_storage",
    # Facade
    "TieredCache",
    "build_tiered_cache",
    # Coordination
    "RequestCoalescer",
    "FetchCoordinator",
    "FetchOptions",
]

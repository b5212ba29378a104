"""
Shared fixtures for cache tests.
"""
import os

# Keep tests off the on-disk store; must run before config.settings is imported
os.environ.setdefault("CACHE_DURABLE_URL", "memory://")

import pytest

from decocache.cache import DurableTier, FastTier, MemoryStorage, TieredCache


class FakeClock:
    """Manually advanced time source for TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def fast_tier(clock):
    return FastTier(max_entries=3, clock=clock)


@pytest.fixture
def durable_tier(storage, clock):
    return DurableTier(storage, prefix="deco-cache:", clock=clock)


@pytest.fixture
def cache(clock, storage):
    """Tiered cache on a fake clock with an in-memory durable store."""
    return TieredCache(
        fast_tier=FastTier(max_entries=100, clock=clock),
        durable_tier=DurableTier(storage, clock=clock),
    )

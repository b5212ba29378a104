"""
Core cache data structures.
"""
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]


class _Miss:
    """Sentinel returned by tier lookups when nothing usable is stored."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


@dataclass(frozen=True)
class CacheEntry:
    """
    A stored value plus the metadata needed to expire it lazily.

    Entries are never mutated; a new set replaces the whole entry.
    """
    value: Any
    stored_at: float  # seconds since epoch
    ttl_seconds: float

    def age_seconds(self, now: Optional[float] = None) -> float:
        """Seconds since the entry was stored."""
        return (time.time() if now is None else now) - self.stored_at

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Expired once strictly more than ttl_seconds have elapsed."""
        return self.age_seconds(now) > self.ttl_seconds

    def to_record(self) -> Dict[str, Any]:
        """Persisted schema: data, timestamp in epoch millis, ttl in seconds."""
        return {
            "data": self.value,
            "timestamp": int(round(self.stored_at * 1000)),
            "ttl": self.ttl_seconds,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CacheEntry":
        """
        Rebuild an entry from its persisted form.

        Raises:
            ValueError: If the record is not a well-formed entry
        """
        if not isinstance(record, dict):
            raise ValueError("cache record must be an object")
        try:
            data = record["data"]
            timestamp = float(record["timestamp"])
            ttl = float(record["ttl"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"malformed cache record: {e}") from e
        if not (math.isfinite(timestamp) and math.isfinite(ttl)):
            raise ValueError("cache record timestamp and ttl must be finite")
        return cls(value=data, stored_at=timestamp / 1000.0, ttl_seconds=ttl)


class FetchState(Enum):
    """Lifecycle of an observed key inside a FetchCoordinator."""
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FETCHING = "fetching"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """
    What a coordinator currently publishes for its key.
    """
    data: Optional[T] = None
    loading: bool = False
    error: Optional[BaseException] = None
    from_cache: bool = False
    state: FetchState = FetchState.IDLE

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "data": self.data,
            "loading": self.loading,
            "error": self.error_message,
            "fromCache": self.from_cache,
            "state": self.state.value,
        }

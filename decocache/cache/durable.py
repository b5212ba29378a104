"""
Persisted cache tier.

DurableTier keeps JSON records under a reserved key prefix in a
KeyValueStorage backend. Durability is best-effort: storage failures
degrade to cache misses and dropped writes, never to errors.

Backends:
- MemoryStorage: dict-backed, optional byte quota (tests, ephemeral hosts)
- SqlStorage: SQLAlchemy table, optional byte quota (SQLite by default)
"""
import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, Integer, String, Text, create_engine, func
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .core import MISS, CacheEntry, Clock

logger = logging.getLogger("cache.durable")

DEFAULT_PREFIX = "deco-cache:"


class StorageError(Exception):
    """A durable storage backend failed to complete an operation."""


class StorageQuotaExceeded(StorageError):
    """A write would take the backend over its byte quota."""


def _item_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueStorage(ABC):
    """
    Minimal string key-value store, modelled on browser local storage.

    Implementations raise StorageError (or StorageQuotaExceeded) on failure.
    """

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def close(self) -> None:
        pass


class MemoryStorage(KeyValueStorage):
    """Dict-backed storage with an optional quota on total key+value bytes."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}
        self._usage = 0

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        old = self._items.get(key)
        old_size = _item_size(key, old) if old is not None else 0
        new_usage = self._usage - old_size + _item_size(key, value)
        if self.quota_bytes is not None and new_usage > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"writing {key!r} needs {new_usage} bytes, quota is {self.quota_bytes}"
            )
        self._items[key] = value
        self._usage = new_usage

    def remove_item(self, key: str) -> None:
        old = self._items.pop(key, None)
        if old is not None:
            self._usage -= _item_size(key, old)

    def keys(self) -> List[str]:
        return list(self._items)

    @property
    def usage_bytes(self) -> int:
        return self._usage


Base = declarative_base()


class StoredItem(Base):
    """One persisted key-value pair."""
    __tablename__ = "kv_store"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    size = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<StoredItem(key='{self.key}', size={self.size})>"


class SqlStorage(KeyValueStorage):
    """
    SQLAlchemy-backed storage.

    Any database URL works; SQLite files get their parent directory
    created on first use.
    """

    def __init__(self, url: str, quota_bytes: Optional[int] = None):
        self.url = url
        self.quota_bytes = quota_bytes

        try:
            parsed = make_url(url)
            engine_kwargs: Dict[str, Any] = {"echo": False}
            if parsed.get_backend_name() == "sqlite":
                engine_kwargs["connect_args"] = {"check_same_thread": False}
                if parsed.database in (None, "", ":memory:"):
                    # Single shared connection, otherwise each checkout sees an empty db
                    engine_kwargs["poolclass"] = StaticPool
                else:
                    Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

            self.engine = create_engine(url, **engine_kwargs)
            Base.metadata.create_all(bind=self.engine)
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"cannot open durable store {url}: {e}") from e

        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def get_item(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                item = session.get(StoredItem, key)
                return item.value if item is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"read failed for {key!r}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        size = _item_size(key, value)
        try:
            with self._session_factory() as session:
                if self.quota_bytes is not None:
                    used = (
                        session.query(func.coalesce(func.sum(StoredItem.size), 0))
                        .filter(StoredItem.key != key)
                        .scalar()
                    )
                    if used + size > self.quota_bytes:
                        raise StorageQuotaExceeded(
                            f"writing {key!r} needs {used + size} bytes, quota is {self.quota_bytes}"
                        )
                session.merge(StoredItem(key=key, value=value, size=size))
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"write failed for {key!r}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            with self._session_factory() as session:
                session.query(StoredItem).filter(StoredItem.key == key).delete()
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"delete failed for {key!r}: {e}") from e

    def keys(self) -> List[str]:
        try:
            with self._session_factory() as session:
                return [row.key for row in session.query(StoredItem.key)]
        except SQLAlchemyError as e:
            raise StorageError(f"listing keys failed: {e}") from e

    def close(self) -> None:
        self.engine.dispose()


def open_storage(url: str, quota_bytes: Optional[int] = None) -> KeyValueStorage:
    """Pick a storage backend from a URL ("memory://" or a SQLAlchemy URL)."""
    if url.startswith("memory://"):
        return MemoryStorage(quota_bytes=quota_bytes)
    return SqlStorage(url, quota_bytes=quota_bytes)


class DurableTier:
    """
    Cache tier persisted in a KeyValueStorage.

    Records are JSON objects ``{"data": ..., "timestamp": <ms>, "ttl": <s>}``
    stored under ``prefix + key``. Same get/set/delete/clear contract as
    FastTier, plus sweep() to drop expired and unreadable records.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        prefix: str = DEFAULT_PREFIX,
        clock: Optional[Clock] = None,
    ):
        self.storage = storage
        self.prefix = prefix
        self._clock = clock or time.time
        self._stats = {
            "dropped_writes": 0,
            "corrupt_entries": 0,
            "swept": 0,
        }

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _own_keys(self) -> List[str]:
        return [k for k in self.storage.keys() if k.startswith(self.prefix)]

    def _remove(self, full_key: str) -> None:
        try:
            self.storage.remove_item(full_key)
        except StorageError as e:
            logger.warning(f"Durable delete failed: {full_key} - {e}")

    def get(self, key: str) -> Any:
        """Return the stored value, or MISS if absent, expired, or unreadable."""
        entry = self.get_entry(key)
        return MISS if entry is None else entry.value

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        full_key = self._full_key(key)
        try:
            raw = self.storage.get_item(full_key)
        except StorageError as e:
            logger.warning(f"Durable read failed, treating as miss: {key} - {e}")
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.from_record(json.loads(raw))
        except ValueError as e:
            logger.warning(f"Corrupt durable entry removed: {key} - {e}")
            self._stats["corrupt_entries"] += 1
            self._remove(full_key)
            return None

        if entry.is_expired(self._clock()):
            logger.debug(f"Expired: {key}")
            self._remove(full_key)
            return None
        return entry

    def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        return self.set_entry(key, CacheEntry(value=value, stored_at=self._clock(), ttl_seconds=ttl_seconds))

    def set_entry(self, key: str, entry: CacheEntry) -> bool:
        """
        Persist an entry.

        On a storage failure, sweeps expired records once and retries once.

        Returns:
            True if the record was written, False if it was dropped
        """
        try:
            payload = json.dumps(entry.to_record())
        except (TypeError, ValueError) as e:
            logger.warning(f"Value not serializable, skipping durable write: {key} - {e}")
            self._stats["dropped_writes"] += 1
            return False

        full_key = self._full_key(key)
        try:
            self.storage.set_item(full_key, payload)
            return True
        except StorageError as e:
            logger.warning(f"Durable write failed, sweeping and retrying: {key} - {e}")

        self.sweep()
        try:
            self.storage.set_item(full_key, payload)
            return True
        except StorageError as e:
            logger.warning(f"Durable write dropped after retry: {key} - {e}")
            self._stats["dropped_writes"] += 1
            return False

    def delete(self, key: str) -> None:
        self._remove(self._full_key(key))

    def clear(self) -> int:
        """Remove every record in this tier's namespace. Returns count."""
        try:
            keys = self._own_keys()
        except StorageError as e:
            logger.warning(f"Durable clear failed: {e}")
            return 0
        for full_key in keys:
            self._remove(full_key)
        return len(keys)

    def sweep(self) -> int:
        """Remove expired and unreadable records. Returns number removed."""
        try:
            keys = self._own_keys()
        except StorageError as e:
            logger.warning(f"Durable sweep failed: {e}")
            return 0

        now = self._clock()
        removed = 0
        for full_key in keys:
            try:
                raw = self.storage.get_item(full_key)
                if raw is None:
                    continue
                expired = CacheEntry.from_record(json.loads(raw)).is_expired(now)
            except StorageError as e:
                logger.warning(f"Durable sweep skipped {full_key}: {e}")
                continue
            except ValueError:
                expired = True
            if expired:
                self._remove(full_key)
                removed += 1

        if removed:
            logger.info(f"Swept {removed} durable cache entries")
        self._stats["swept"] += removed
        return removed

    @property
    def size(self) -> int:
        try:
            return len(self._own_keys())
        except StorageError:
            return 0

    def get_stats(self) -> Dict[str, Any]:
        return {"entries": self.size, **self._stats}

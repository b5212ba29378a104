"""
Fetch coordination: debounced, cache-first, race-safe data loading.

A FetchCoordinator owns one observed key at a time. Callers feed it the
current key, producer and dependency tuple through observe(); it debounces
changes, answers from the TieredCache when it can, otherwise runs the
producer and publishes the result only if it still belongs to the latest
dependencies.

States: IDLE -> DEBOUNCING -> FETCHING -> RESOLVED | FAILED, and back to
DEBOUNCING on the next dependency change.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Set, TypeVar

from .coalescer import RequestCoalescer
from .core import MISS, FetchResult, FetchState
from .keys import build_key, dependency_snapshot
from .tiered import TieredCache

logger = logging.getLogger("cache.coordinator")

T = TypeVar("T")

Producer = Callable[[], Awaitable[T]]
Listener = Callable[[FetchResult], None]


@dataclass(frozen=True)
class FetchOptions:
    """Per-coordinator policy knobs."""
    ttl_seconds: float = 7200
    debounce_ms: float = 100
    cache_enabled: bool = True
    fetch_on_create: bool = True
    clear_on_change: bool = False  # drop published data while re-debouncing

    @classmethod
    def from_settings(cls, settings, **overrides: Any) -> "FetchOptions":
        values = {
            "ttl_seconds": settings.fetch_ttl_seconds,
            "debounce_ms": settings.fetch_debounce_ms,
            "cache_enabled": settings.fetch_cache_enabled,
            "fetch_on_create": settings.fetch_on_create,
        }
        values.update(overrides)
        return cls(**values)


class FetchCoordinator(Generic[T]):
    """
    Explicit state machine for one observed key.

    Owns an epoch counter, the snapshot of the latest dependencies, a
    cancellable debounce timer and the published result. observe, refresh,
    invalidate_cache and dispose are the only mutators, and all of them
    must be called from the event loop thread.

    Stale-response guard: a producer started at epoch E for snapshot S is
    published (and cached) only if, when it completes, the epoch is still E,
    the snapshot is still S and the coordinator has not been disposed.
    Superseded producers are left running; their results are dropped.
    """

    def __init__(
        self,
        cache: TieredCache,
        options: Optional[FetchOptions] = None,
        coalescer: Optional[RequestCoalescer] = None,
    ):
        self.cache = cache
        self.options = options or FetchOptions()
        self._coalescer = coalescer

        self._epoch = 0
        self._snapshot: Optional[str] = None
        self._key: Optional[str] = None
        self._producer: Optional[Producer] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._in_flight: Set["asyncio.Task[None]"] = set()
        self._result: FetchResult = FetchResult()
        self._listeners: List[Listener] = []
        self._observed = False
        self._disposed = False

    @classmethod
    def simple(
        cls,
        cache: TieredCache,
        prefix: str,
        producer: Producer,
        dependencies: Sequence[Any] = (),
        options: Optional[FetchOptions] = None,
        coalescer: Optional[RequestCoalescer] = None,
    ) -> "FetchCoordinator[T]":
        """Create a coordinator whose key is derived from prefix + dependencies."""
        coordinator = cls(cache, options=options, coalescer=coalescer)
        coordinator.observe(cls.simple_key(prefix, dependencies), producer, dependencies)
        return coordinator

    @staticmethod
    def simple_key(prefix: str, dependencies: Sequence[Any]) -> str:
        return build_key(prefix, {"deps": dependency_snapshot(dependencies)})

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def result(self) -> FetchResult:
        return self._result

    @property
    def current(self) -> Optional[T]:
        return self._result.data

    @property
    def state(self) -> FetchState:
        return self._result.state

    @property
    def key(self) -> Optional[str]:
        return self._key

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener with every published FetchResult. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def observe(
        self,
        key: str,
        producer: Producer,
        dependencies: Sequence[Any],
        options: Optional[FetchOptions] = None,
    ) -> bool:
        """
        Report the caller's current key, producer and dependencies.

        A change of key or of the dependency snapshot cancels any pending
        debounce, advances the epoch (so in-flight results become stale) and
        schedules a new debounce timer. Unchanged input only refreshes the
        stored producer.

        Returns:
            True if a new debounce cycle was started

        Raises:
            RuntimeError: If disposed, or if called outside a running event loop
        """
        self._ensure_live()
        loop = asyncio.get_running_loop()
        if options is not None:
            self.options = options
        self._producer = producer

        snapshot = dependency_snapshot(dependencies)
        first = not self._observed
        if not first and key == self._key and snapshot == self._snapshot:
            return False

        self._observed = True
        self._key = key
        self._snapshot = snapshot
        self._cancel_timer()
        self._epoch += 1

        if first and not self.options.fetch_on_create:
            self._publish(replace(self._result, loading=False, state=FetchState.IDLE))
            return False

        data = None if self.options.clear_on_change else self._result.data
        self._publish(replace(self._result, data=data, loading=True, state=FetchState.DEBOUNCING))

        self._timer = loop.call_later(
            self.options.debounce_ms / 1000.0, self._on_debounce_elapsed, self._epoch
        )
        return True

    async def refresh(self) -> FetchResult:
        """
        Fetch now, skipping the cache read and the debounce.

        The result is still written back to the cache.
        """
        self._ensure_live()
        if not self._observed:
            raise RuntimeError("refresh() called before observe()")

        self._cancel_timer()
        task = self._dispatch(bypass_cache=True)
        if task is not None:
            await asyncio.shield(task)
        return self._result

    def invalidate_cache(self) -> None:
        """Delete the observed key from the cache; published data is untouched."""
        self._ensure_live()
        if self._key is not None:
            self.cache.delete(self._key)

    def dispose(self) -> None:
        """Stop observing. Pending timers are cancelled and in-flight results dropped."""
        if self._disposed:
            return
        self._cancel_timer()
        self._epoch += 1
        self._disposed = True
        self._producer = None
        self._listeners.clear()
        logger.debug(f"Disposed coordinator for {self._key}")

    def __enter__(self) -> "FetchCoordinator[T]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    async def settle(self) -> FetchResult:
        """Wait until no debounce is pending and no producer is running."""
        while True:
            pending = [task for task in self._in_flight if not task.done()]
            if pending:
                await asyncio.wait(pending)
            elif self._timer is not None:
                await asyncio.sleep(self.options.debounce_ms / 1000.0)
            else:
                return self._result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_live(self) -> None:
        if self._disposed:
            raise RuntimeError("FetchCoordinator has been disposed")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_debounce_elapsed(self, epoch: int) -> None:
        if epoch != self._epoch or self._disposed:
            return
        self._timer = None
        self._dispatch(bypass_cache=False)

    def _dispatch(self, bypass_cache: bool) -> Optional["asyncio.Task[None]"]:
        key = self._key
        if self.options.cache_enabled and not bypass_cache:
            cached = self.cache.get(key)
            if cached is not MISS:
                logger.debug(f"Served from cache: {key}")
                self._publish(FetchResult(
                    data=cached,
                    loading=False,
                    error=None,
                    from_cache=True,
                    state=FetchState.RESOLVED,
                ))
                return None

        self._epoch += 1
        epoch, snapshot = self._epoch, self._snapshot
        self._publish(replace(self._result, loading=True, state=FetchState.FETCHING))
        logger.info(f"Fetching {key} (epoch={epoch}, refresh={bypass_cache})")

        task = asyncio.ensure_future(
            self._run_producer(key, self._producer, epoch, snapshot, join=not bypass_cache)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run_producer(
        self,
        key: str,
        producer: Producer,
        epoch: int,
        snapshot: Optional[str],
        join: bool,
    ) -> None:
        try:
            if join and self._coalescer is not None:
                value = await self._coalescer.run(key, producer)
            else:
                value = await producer()
        except Exception as e:
            if not self._is_current(epoch, snapshot):
                logger.debug(f"Discarding stale failure for {key} (epoch={epoch})")
                return
            logger.warning(f"Fetch failed for {key}: {e}")
            self._publish(replace(
                self._result,
                loading=False,
                error=e,
                from_cache=False,
                state=FetchState.FAILED,
            ))
            return

        if not self._is_current(epoch, snapshot):
            logger.debug(f"Discarding stale response for {key} (epoch={epoch}, current={self._epoch})")
            return

        if self.options.cache_enabled:
            self.cache.set(key, value, self.options.ttl_seconds)
        self._publish(FetchResult(
            data=value,
            loading=False,
            error=None,
            from_cache=False,
            state=FetchState.RESOLVED,
        ))

    def _is_current(self, epoch: int, snapshot: Optional[str]) -> bool:
        return (
            not self._disposed
            and epoch == self._epoch
            and snapshot == self._snapshot
        )

    def _publish(self, result: FetchResult) -> None:
        self._result = result
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.warning(f"Result listener failed for {self._key}: {e}")

"""
Request coalescing to prevent duplicate upstream calls.

When several coordinators ask for the same key while a fetch is already
running, only one producer call is made and all callers share its outcome.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress producer call."""
    task: "asyncio.Task[Any]"
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one producer call.

    Pattern:
    - First request for a key starts the producer as a task
    - Later requests for the same key await that task
    - When it completes, every waiter receives the same value or exception
    - Single event loop, so no locking is needed

    Usage:
        coalescer = RequestCoalescer()
        result = await coalescer.run("douban-kind=movie", fetch_movies)
    """

    def __init__(self, timeout: float = 30.0):
        """
        Initialize the coalescer.

        Args:
            timeout: Max seconds a joining caller waits for an in-flight request
        """
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._timeout = timeout

    async def run(
        self,
        cache_key: str,
        producer: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Either join an existing in-flight request or start a new one.

        Raises:
            TimeoutError: If waiting for an in-flight request times out
            Exception: Any error from producer is propagated
        """
        in_flight = self._in_flight.get(cache_key)
        if in_flight is not None and not in_flight.task.done():
            in_flight.waiter_count += 1
            logger.debug(
                f"Coalescing request for {cache_key} "
                f"(waiters: {in_flight.waiter_count})"
            )
            try:
                return await asyncio.wait_for(asyncio.shield(in_flight.task), self._timeout)
            except asyncio.TimeoutError:
                logger.error(f"Timeout waiting for coalesced request: {cache_key}")
                raise TimeoutError(
                    f"Request for {cache_key} timed out after {self._timeout}s"
                ) from None

        logger.debug(f"Initiating fetch for {cache_key}")
        task = asyncio.ensure_future(producer())
        in_flight = InFlightRequest(task=task)
        self._in_flight[cache_key] = in_flight
        task.add_done_callback(lambda _: self._release(cache_key, in_flight))

        # Shielded so a cancelled initiator does not cancel the shared call
        return await asyncio.shield(task)

    def _release(self, cache_key: str, in_flight: InFlightRequest) -> None:
        if self._in_flight.get(cache_key) is in_flight:
            del self._in_flight[cache_key]
        task = in_flight.task
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Fetch failed for {cache_key}: {task.exception()}")

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
        }

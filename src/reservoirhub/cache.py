"""
Server-side response cache.

Upstream government APIs are rate limited; concurrent page requests should
share one upstream call per source per cache window. The window comes from the
source's ``cache_seconds`` policy column and is independent of client polling.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

from .scheduler import Clock, MonotonicClock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Per-key cache with expiry and coalescing of concurrent misses."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or MonotonicClock()
        self._entries: Dict[str, Tuple[float, T]] = {}
        self._inflight: Dict[str, "asyncio.Future[T]"] = {}

    def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock.now() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: T, ttl: float) -> None:
        self._entries[key] = (self.clock.now() + ttl, value)

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_fetch(
        self,
        key: str,
        ttl: float,
        fetch: Callable[[], Awaitable[T]],
        should_cache: Callable[[T], bool] = lambda value: True,
    ) -> T:
        """
        Return the cached value for ``key`` or run ``fetch`` once to fill it.

        The fetch runs in its own task; every caller, including the one that
        started it, awaits it through ``asyncio.shield``. A caller that is
        cancelled or times out therefore never cancels the fetch for the
        others. Exceptions from ``fetch`` propagate to every waiter and are not
        cached; neither are results rejected by ``should_cache``.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {key}")
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fill(key, ttl, fetch, should_cache))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _fill(
        self,
        key: str,
        ttl: float,
        fetch: Callable[[], Awaitable[T]],
        should_cache: Callable[[T], bool],
    ) -> T:
        try:
            value = await fetch()
            if should_cache(value):
                self.set(key, value, ttl)
            return value
        finally:
            self._inflight.pop(key, None)


def _consume_exception(task: "asyncio.Future[Any]") -> None:
    # mark the exception retrieved when every waiter has gone away
    if not task.cancelled():
        task.exception()

"""
Client revalidation controller.

Keeps one ``CacheEntry`` per source key, seeded from the server's
``FallbackSnapshot``, and refreshes each source independently on its own
freshness policy: when its poll interval elapses, when the window regains
focus, when connectivity returns, or on an explicit manual trigger.

Per source key the lifecycle is::

    Uninitialized -> Seeded -> Validating -> Settled (fresh | errored)
                                   ^                 |
                                   +-----------------+

Rules:
- At most one request per key is in flight. A trigger that arrives while
  validating, or within ``dedup_window`` of the previous fetch start, is
  dropped.
- A failed fetch is retried up to ``max_retries`` times, ``retry_backoff``
  seconds apart. After that the entry records the error but keeps its last
  known good data.
- A forced (manual) trigger supersedes an in-flight fetch; results from a
  superseded fetch are discarded even if they arrive later.

Everything runs on one asyncio event loop, so the entry map is only touched
from that loop and needs no locking.
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .exceptions import (
    UnknownSourceError,
    UpstreamError,
    UpstreamMalformedResponse,
    UpstreamTimeout,
)
from .fetchers import SourceFetcher
from .models import SOURCE_KEYS, CacheEntry, FallbackSnapshot, SourceBundle, SourceState
from .policy import FRESHNESS_POLICIES, FreshnessPolicy, policy_for
from .scheduler import (
    FOCUS,
    INTERVAL,
    MANUAL,
    RECONNECT,
    SEED,
    Clock,
    MonotonicClock,
    TriggerScheduler,
)

logger = logging.getLogger(__name__)

Listener = Callable[[str, SourceState], None]


class CacheContext:
    """Owner of the per-source cache entries for one dashboard instance."""

    def __init__(self, keys: Iterable[str] = SOURCE_KEYS):
        self._entries: Dict[str, CacheEntry] = {key: CacheEntry() for key in keys}

    def entry(self, key: str) -> CacheEntry:
        try:
            return self._entries[key]
        except KeyError:
            raise UnknownSourceError(key) from None

    def keys(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class RevalidationController:
    """
    Per-source stale-while-revalidate state machine.

    Args:
        fetcher: Produces bundles for source keys
        policies: Freshness policy table (one row per key in ``context``)
        clock: Time source for dedup, retry backoff and poll intervals
        context: Cache entries to own; a fresh one is created if omitted
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        policies: Mapping[str, FreshnessPolicy] = FRESHNESS_POLICIES,
        clock: Optional[Clock] = None,
        context: Optional[CacheContext] = None,
    ):
        self.fetcher = fetcher
        self.clock = clock or MonotonicClock()
        self.context = context or CacheContext(policies.keys())
        self.policies = {key: policy_for(key, policies) for key in self.context.keys()}
        self.scheduler = TriggerScheduler(self.policies)
        self.online = True
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._listeners: List[Listener] = []
        self._running = False

    # Read side

    def get_state(self, key: str) -> SourceState:
        return SourceState.from_entry(self.context.entry(key))

    def states(self) -> Dict[str, SourceState]:
        return {key: self.get_state(key) for key in self.context.keys()}

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(key, state)`` after every entry change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        state = self.get_state(key)
        for listener in list(self._listeners):
            try:
                listener(key, state)
            except Exception:
                logger.error(f"State listener failed for {key}", exc_info=True)

    # Lifecycle

    def seed(self, snapshot: FallbackSnapshot) -> List[str]:
        """
        Seed empty entries from the server snapshot.

        Entries that already hold data are left alone; a snapshot never
        overwrites something fetched on the client.
        """
        seeded = []
        for key in self.context.keys():
            bundle = snapshot.get(key)
            entry = self.context.entry(key)
            if bundle is None or entry.data is not None:
                continue
            entry.data = bundle
            entry.seeded = True
            seeded.append(key)
            self._notify(key)
        logger.debug(f"Seeded from snapshot: {seeded}")
        return seeded

    def start(self, snapshot: Optional[FallbackSnapshot] = None) -> List[str]:
        """Seed (optionally) and kick off the first client-side fetch of every key."""
        if snapshot is not None:
            self.seed(snapshot)
        return [key for key in self.context.keys() if self.trigger(key, SEED)]

    async def aclose(self) -> None:
        """Cancel in-flight fetches."""
        self.stop()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # Triggers

    def trigger(self, key: str, reason: str = MANUAL, force: bool = False) -> bool:
        """
        Request a revalidation of ``key``.

        Returns True when a fetch was started, False when the trigger was
        dropped by the dedup rules. ``force`` bypasses dedup and supersedes
        any fetch already in flight.

        Must be called from inside the running event loop.
        """
        entry = self.context.entry(key)
        policy = self.policies[key]
        now = self.clock.now()

        if not force:
            if not self.online:
                logger.debug(f"Dropped {reason} trigger for {key}: offline")
                return False
            if entry.is_validating:
                logger.debug(f"Dropped {reason} trigger for {key}: already validating")
                if reason == INTERVAL:
                    # the in-flight fetch re-arms the interval when it settles
                    self.scheduler.disarm(key)
                return False
            if (
                entry.last_started_at is not None
                and now - entry.last_started_at < policy.dedup_window
            ):
                logger.debug(f"Dropped {reason} trigger for {key}: within dedup window")
                if reason == INTERVAL:
                    self.scheduler.reschedule(key, now)
                return False
        else:
            previous = self._tasks.get(key)
            if previous is not None and not previous.done():
                logger.debug(f"Superseding in-flight fetch of {key}")
                previous.cancel()

        entry.generation += 1
        entry.last_started_at = now
        entry.is_validating = True
        self.scheduler.disarm(key)
        task = asyncio.get_running_loop().create_task(
            self._revalidate(key, entry.generation)
        )
        self._tasks[key] = task
        logger.debug(f"Revalidating {key} ({reason}, generation {entry.generation})")
        self._notify(key)
        return True

    def mutate(self, key: str) -> bool:
        """Manual refresh: always starts a new fetch."""
        return self.trigger(key, MANUAL, force=True)

    async def revalidate(self, key: str, force: bool = False) -> SourceState:
        """Trigger ``key`` and wait for the cycle it belongs to to settle."""
        self.trigger(key, MANUAL, force=force)
        task = self._tasks.get(key)
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self.get_state(key)

    def notify_focus(self) -> List[str]:
        """The window regained focus."""
        return [
            key
            for key in self.scheduler.subscribers(FOCUS)
            if key in self.context and self.trigger(key, FOCUS)
        ]

    def notify_reconnect(self) -> List[str]:
        """Network connectivity came back."""
        self.online = True
        return [
            key
            for key in self.scheduler.subscribers(RECONNECT)
            if key in self.context and self.trigger(key, RECONNECT)
        ]

    def notify_offline(self) -> None:
        """Network connectivity was lost; interval polling pauses."""
        self.online = False

    def tick(self) -> List[str]:
        """Fire every poll interval that has elapsed."""
        if not self.online:
            return []
        return [
            key
            for key in self.scheduler.due(self.clock.now())
            if self.trigger(key, INTERVAL)
        ]

    async def run(self, max_sleep: float = 1.0) -> None:
        """
        Drive interval triggers until ``stop()`` is called.

        Sleeps until the next armed poll interval (at most ``max_sleep``).
        Keys with a fetch in flight are disarmed until it settles, and while
        offline the loop only wakes every ``max_sleep`` seconds.
        """
        self._running = True
        while self._running:
            self.tick()
            deadline = self.scheduler.next_deadline()
            delay = max_sleep
            if self.online and deadline is not None:
                delay = min(max_sleep, max(0.0, deadline - self.clock.now()))
            await self.clock.sleep(delay)

    def stop(self) -> None:
        self._running = False

    # Fetch cycle

    async def _attempt(self, key: str, policy: FreshnessPolicy) -> SourceBundle:
        try:
            return await asyncio.wait_for(
                self.fetcher.fetch(key), policy.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(
                f"Request timeout after {policy.timeout_seconds}s", source=key
            ) from e
        except UpstreamError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error fetching {key}", exc_info=True)
            raise UpstreamMalformedResponse(
                f"Failed to fetch {key}: {e}", source=key
            ) from e

    async def _revalidate(self, key: str, generation: int) -> None:
        policy = self.policies[key]
        entry = self.context.entry(key)
        retries = 0
        while True:
            try:
                bundle = await self._attempt(key, policy)
            except UpstreamError as e:
                if retries >= policy.max_retries:
                    self._settle(key, generation, error=e)
                    return
                retries += 1
                logger.info(
                    f"Fetch of {key} failed ({e.kind.value}), "
                    f"retry {retries}/{policy.max_retries} in {policy.retry_backoff}s"
                )
                await self.clock.sleep(policy.retry_backoff)
                if entry.generation != generation:
                    return
            else:
                self._settle(key, generation, bundle=bundle)
                return

    def _settle(
        self,
        key: str,
        generation: int,
        bundle: Optional[SourceBundle] = None,
        error: Optional[UpstreamError] = None,
    ) -> None:
        entry = self.context.entry(key)
        if entry.generation != generation:
            logger.debug(
                f"Discarding superseded result for {key} "
                f"(generation {generation}, current {entry.generation})"
            )
            return

        now = self.clock.now()
        entry.is_validating = False
        entry.last_settled_at = now
        if bundle is not None:
            entry.data = bundle
            entry.error = None
            entry.last_fetched_at = now
            logger.info(f"Revalidated {key}")
        elif error is not None:
            entry.error = error.kind
            if entry.data is None and error.fallback is not None:
                entry.data = error.fallback
            logger.warning(f"Revalidation of {key} failed, keeping last data: {error}")

        self.scheduler.reschedule(key, now)
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        self._notify(key)

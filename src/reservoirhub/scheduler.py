"""
Trigger scheduling for client-side revalidation.

Replaces ad-hoc timers with an explicit table: per source key, the next time
its poll interval fires, and the set of events (focus, reconnect) it is
subscribed to. Time comes from an injected ``Clock`` so the trigger logic can
be exercised without waiting on the wall clock.
"""

import asyncio
import heapq
import time
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .policy import FreshnessPolicy

FOCUS = "focus"
RECONNECT = "reconnect"
INTERVAL = "interval"
MANUAL = "manual"
SEED = "seed"


class Clock:
    """Monotonic time source in seconds."""

    def now(self) -> float:
        raise NotImplementedError

    async def sleep(self, seconds: float) -> None:
        raise NotImplementedError


class MonotonicClock(Clock):
    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """
    Clock advanced explicitly by the caller.

    ``sleep`` suspends until ``advance`` moves time past the wake-up point,
    so retry backoff and polling can be driven deterministically. With
    ``auto_advance`` every sleep returns at once after moving time forward.
    """

    def __init__(self, start: float = 0.0, auto_advance: bool = False):
        self._now = start
        self.auto_advance = auto_advance
        self._sleepers: List[Tuple[float, int, asyncio.Future]] = []
        self._counter = 0

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0 or self.auto_advance:
            self._now += max(0.0, seconds)
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._counter += 1
        heapq.heappush(self._sleepers, (self._now + seconds, self._counter, future))
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, f in self._sleepers if not f.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self._now + seconds
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
            # let woken tasks run before waking the next one
            for _ in range(5):
                await asyncio.sleep(0)
        self._now = target
        await asyncio.sleep(0)


class TriggerScheduler:
    """Next-fire timestamps and event subscriptions per source key."""

    def __init__(self, policies: Mapping[str, FreshnessPolicy]):
        self._policies = dict(policies)
        self._next_fire: Dict[str, Optional[float]] = {key: None for key in policies}
        self._subscriptions: Dict[str, Set[str]] = {FOCUS: set(), RECONNECT: set()}
        for key, policy in self._policies.items():
            if policy.revalidate_on_focus:
                self._subscriptions[FOCUS].add(key)
            if policy.revalidate_on_reconnect:
                self._subscriptions[RECONNECT].add(key)

    @property
    def keys(self) -> Iterable[str]:
        return self._policies.keys()

    def reschedule(self, key: str, now: float) -> float:
        """Arm the poll interval for ``key`` starting at ``now`` (its last settle)."""
        fire_at = now + self._policies[key].poll_interval
        self._next_fire[key] = fire_at
        return fire_at

    def disarm(self, key: str) -> None:
        """Stop the poll interval for ``key`` until the next ``reschedule``."""
        self._next_fire[key] = None

    def next_fire(self, key: str) -> Optional[float]:
        return self._next_fire.get(key)

    def due(self, now: float) -> List[str]:
        """Keys whose poll interval has elapsed."""
        return [
            key
            for key, fire_at in self._next_fire.items()
            if fire_at is not None and fire_at <= now
        ]

    def next_deadline(self) -> Optional[float]:
        pending = [t for t in self._next_fire.values() if t is not None]
        return min(pending) if pending else None

    def subscribers(self, event: str) -> List[str]:
        return sorted(self._subscriptions.get(event, set()))

    def subscribe(self, event: str, key: str) -> None:
        self._subscriptions.setdefault(event, set()).add(key)

    def unsubscribe(self, event: str, key: str) -> None:
        self._subscriptions.get(event, set()).discard(key)

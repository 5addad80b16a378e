"""
Trend annotations: change of a quantity against its value 24 hours earlier.

A real comparison needs a genuine prior-period sample, so observations are
kept in a bounded in-memory rolling window per quantity. Nothing is written to
disk; the window lives as long as the process (or page) does.
"""

from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Iterable, Optional, Tuple

import pandas as pd

from .models import Observation, SourceBundle, TrendAnnotation

TREND_LOOKBACK = timedelta(hours=24)
# slightly longer than the lookback so a 24h-prior sample is still present
HISTORY_WINDOW = timedelta(hours=25)

UP = "up"
DOWN = "down"
STEADY = "steady"


def compute_trend(
    current: Optional[float], prior: Optional[float], threshold: float = 0.0
) -> Optional[TrendAnnotation]:
    """
    Compare ``current`` with ``prior``.

    Direction is 'steady' when the values are equal or ``|delta| < threshold``.
    Returns None when either value is unavailable; a missing sample never
    reads as no change.
    """
    if current is None or prior is None:
        return None
    delta = float(current) - float(prior)
    if delta == 0 or abs(delta) < threshold:
        direction = STEADY
    elif delta > 0:
        direction = UP
    else:
        direction = DOWN
    return TrendAnnotation(delta=round(delta, 4), direction=direction)


class ObservationHistory:
    """Rolling window of numeric observations keyed by quantity name."""

    def __init__(self, window: timedelta = HISTORY_WINDOW):
        self.window = window
        self._samples: Dict[str, Deque[Tuple[datetime, float]]] = defaultdict(deque)

    def record(self, quantity: str, observation: Observation) -> bool:
        """Store a numeric observation; unavailable or text values are ignored."""
        if not isinstance(observation.value, (int, float)) or isinstance(
            observation.value, bool
        ):
            return False
        samples = self._samples[quantity]
        stamp = observation.observed_at
        if samples and stamp <= samples[-1][0]:
            if stamp == samples[-1][0]:
                samples[-1] = (stamp, float(observation.value))
                return True
            return False
        samples.append((stamp, float(observation.value)))
        self._prune(quantity, stamp)
        return True

    def record_bundle(self, bundle: SourceBundle, prefix: Optional[str] = None) -> int:
        """Record every observation of a non-degraded bundle."""
        if bundle.degraded:
            return 0
        recorded = 0
        for quantity, observation in bundle.observations.items():
            name = f"{prefix}.{quantity}" if prefix else quantity
            recorded += self.record(name, observation)
        return recorded

    def _prune(self, quantity: str, latest: datetime) -> None:
        samples = self._samples[quantity]
        cutoff = latest - self.window
        while samples and samples[0][0] < cutoff:
            samples.popleft()

    def series(self, quantity: str) -> "pd.Series":
        samples = self._samples.get(quantity)
        if not samples:
            return pd.Series(dtype="float64")
        index = pd.DatetimeIndex([stamp for stamp, _ in samples])
        return pd.Series([value for _, value in samples], index=index, dtype="float64")

    def prior(
        self, quantity: str, at: datetime, lookback: timedelta = TREND_LOOKBACK
    ) -> Optional[float]:
        """The last sample at or before ``at - lookback``, if the window holds one."""
        series = self.series(quantity)
        if series.empty:
            return None
        target = pd.Timestamp(at - lookback)
        if target < series.index[0]:
            return None
        value = series.asof(target)
        return None if pd.isna(value) else float(value)

    def trend(
        self,
        quantity: str,
        current: Observation,
        threshold: float = 0.0,
        lookback: timedelta = TREND_LOOKBACK,
    ) -> Optional[TrendAnnotation]:
        if not current.available:
            return None
        prior = self.prior(quantity, current.observed_at, lookback)
        return compute_trend(current.value, prior, threshold)

    def quantities(self) -> Iterable[str]:
        return list(self._samples)

"""
Freshness policy table.

Each upstream source changes at its own natural rate: weather forecasts every
few minutes, lake telemetry roughly every 15 minutes, the projected discharge
once a day. One row per source key controls how often the client re-polls,
how long the server caches, and how failures are retried and degraded.

The table is plain data; operators can override it from a mapping or a JSON
file without touching fetch logic.
"""

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from .exceptions import PolicyError
from .models import LAKE_LEVEL, OUTFLOW, SOURCE_KEYS, WEATHER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreshnessPolicy:
    """Revalidation and caching settings for one source key (seconds)."""

    poll_interval: float
    dedup_window: float
    revalidate_on_focus: bool
    revalidate_on_reconnect: bool
    max_retries: int
    retry_backoff: float
    cache_seconds: float
    timeout_seconds: float
    degrade_to_fallback: bool

    def __post_init__(self) -> None:
        for name in ("poll_interval", "cache_seconds", "timeout_seconds"):
            if getattr(self, name) <= 0:
                raise PolicyError(f"{name} must be positive")
        if self.dedup_window < 0 or self.retry_backoff < 0:
            raise PolicyError("dedup_window and retry_backoff must not be negative")
        if self.max_retries < 0:
            raise PolicyError("max_retries must not be negative")


FRESHNESS_POLICIES: Dict[str, FreshnessPolicy] = {
    LAKE_LEVEL: FreshnessPolicy(
        poll_interval=15 * 60,
        dedup_window=5,
        revalidate_on_focus=True,
        revalidate_on_reconnect=True,
        max_retries=3,
        retry_backoff=5,
        cache_seconds=15 * 60,
        timeout_seconds=10,
        degrade_to_fallback=True,
    ),
    OUTFLOW: FreshnessPolicy(
        poll_interval=60 * 60,
        dedup_window=60,
        revalidate_on_focus=False,  # daily projection
        revalidate_on_reconnect=True,
        max_retries=2,
        retry_backoff=5,
        cache_seconds=24 * 60 * 60,
        timeout_seconds=15,
        degrade_to_fallback=True,
    ),
    WEATHER: FreshnessPolicy(
        poll_interval=10 * 60,
        dedup_window=5,
        revalidate_on_focus=True,
        revalidate_on_reconnect=True,
        max_retries=3,
        retry_backoff=5,
        cache_seconds=10 * 60,
        timeout_seconds=15,
        degrade_to_fallback=False,
    ),
}

_COLUMNS = {f.name for f in fields(FreshnessPolicy)}

# camelCase spellings accepted in override files
_ALIASES = {
    "pollIntervalMs": ("poll_interval", 1000.0),
    "dedupWindowMs": ("dedup_window", 1000.0),
    "revalidateOnFocus": ("revalidate_on_focus", None),
    "revalidateOnReconnect": ("revalidate_on_reconnect", None),
    "maxRetries": ("max_retries", None),
    "retryBackoffMs": ("retry_backoff", 1000.0),
    "cacheSeconds": ("cache_seconds", None),
    "timeoutMs": ("timeout_seconds", 1000.0),
    "degradeToFallback": ("degrade_to_fallback", None),
}


def _normalize_row(key: str, row: Mapping[str, Any]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for column, value in row.items():
        if column in _ALIASES:
            name, divisor = _ALIASES[column]
            normalized[name] = value / divisor if divisor else value
        elif column in _COLUMNS:
            normalized[column] = value
        else:
            raise PolicyError(f"Unknown policy column {column!r} for {key!r}")
    return normalized


def load_policy_table(
    overrides: Mapping[str, Mapping[str, Any]],
    base: Mapping[str, FreshnessPolicy] = FRESHNESS_POLICIES,
) -> Dict[str, FreshnessPolicy]:
    """
    Return a copy of ``base`` with per-key column overrides applied.

    Args:
        overrides: ``{source_key: {column: value}}``; columns may use the
                   snake_case field names or the camelCase millisecond
                   spellings (``pollIntervalMs``, ``dedupWindowMs``, ...)
        base: Table to start from

    Raises:
        PolicyError: On unknown source keys, unknown columns or invalid values
    """
    table = dict(base)
    for key, row in overrides.items():
        if key not in SOURCE_KEYS:
            raise PolicyError(f"Unknown source key {key!r}")
        try:
            table[key] = replace(table[key], **_normalize_row(key, row))
        except TypeError as e:
            raise PolicyError(f"Invalid policy override for {key!r}: {e}") from e
        logger.debug(f"Policy for {key} overridden: {table[key]}")
    return table


def load_policy_file(
    path: Union[str, Path],
    base: Mapping[str, FreshnessPolicy] = FRESHNESS_POLICIES,
) -> Dict[str, FreshnessPolicy]:
    """Load policy overrides from a JSON file shaped like ``load_policy_table``."""
    try:
        overrides = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise PolicyError(f"Could not read policy file {path}: {e}") from e
    if not isinstance(overrides, dict):
        raise PolicyError("Policy file must contain a JSON object")
    return load_policy_table(overrides, base=base)


def policy_for(
    key: str, table: Mapping[str, FreshnessPolicy] = FRESHNESS_POLICIES
) -> FreshnessPolicy:
    try:
        return table[key]
    except KeyError:
        raise PolicyError(f"No freshness policy for {key!r}") from None

"""
Near-real-time reservoir conditions: lake level, outflow and weather.

Aggregates public USACE and NWS data with per-source freshness windows and
graceful fallback.
"""

try:
    from importlib import metadata

    __version__ = metadata.version(__name__)
except Exception:
    __version__ = "unknown"

from .adapters import ADAPTERS, fetch_lake_level, fetch_outflow, fetch_source, fetch_weather
from .cache import TTLCache
from .client import UpstreamClient
from .config import HubConfig
from .exceptions import (
    ErrorKind,
    NetworkUnavailable,
    PolicyError,
    ReservoirHubError,
    UnknownSourceError,
    UpstreamError,
    UpstreamHttpError,
    UpstreamMalformedResponse,
    UpstreamTimeout,
)
from .fallback import FALLBACK_VALUES, FetchResult, fallback_bundle, fetch_with_fallback
from .fetchers import ApiFetcher, CachedFetcher, DirectFetcher, SourceFetcher
from .models import (
    LAKE_LEVEL,
    OUTFLOW,
    SOURCE_KEYS,
    WEATHER,
    CacheEntry,
    FallbackSnapshot,
    ForecastPeriod,
    Observation,
    SourceBundle,
    SourceState,
    TrendAnnotation,
)
from .policy import FRESHNESS_POLICIES, FreshnessPolicy, load_policy_file, load_policy_table
from .prefetch import Prefetcher, prefetch_snapshot
from .revalidation import CacheContext, RevalidationController
from .scheduler import Clock, ManualClock, MonotonicClock, TriggerScheduler
from .sync import AsyncSyncBridge, fetch_source_sync, prefetch_snapshot_sync
from .trends import ObservationHistory, compute_trend
from .view import attach_history, build_view_model

__all__ = [
    # Source keys
    "LAKE_LEVEL",
    "OUTFLOW",
    "WEATHER",
    "SOURCE_KEYS",
    # Configuration
    "HubConfig",
    "FreshnessPolicy",
    "FRESHNESS_POLICIES",
    "load_policy_table",
    "load_policy_file",
    # Data models
    "Observation",
    "ForecastPeriod",
    "SourceBundle",
    "FallbackSnapshot",
    "CacheEntry",
    "SourceState",
    "TrendAnnotation",
    # Upstream adapters
    "UpstreamClient",
    "ADAPTERS",
    "fetch_lake_level",
    "fetch_outflow",
    "fetch_weather",
    "fetch_source",
    # Fallback policy
    "FALLBACK_VALUES",
    "FetchResult",
    "fallback_bundle",
    "fetch_with_fallback",
    # Fetchers and prefetch
    "SourceFetcher",
    "DirectFetcher",
    "ApiFetcher",
    "CachedFetcher",
    "TTLCache",
    "Prefetcher",
    "prefetch_snapshot",
    # Client revalidation
    "CacheContext",
    "RevalidationController",
    "Clock",
    "MonotonicClock",
    "ManualClock",
    "TriggerScheduler",
    # Trends and view model
    "ObservationHistory",
    "compute_trend",
    "build_view_model",
    "attach_history",
    # Sync wrappers
    "AsyncSyncBridge",
    "prefetch_snapshot_sync",
    "fetch_source_sync",
    # Exceptions
    "ReservoirHubError",
    "UpstreamError",
    "UpstreamTimeout",
    "UpstreamHttpError",
    "UpstreamMalformedResponse",
    "NetworkUnavailable",
    "PolicyError",
    "UnknownSourceError",
    "ErrorKind",
]

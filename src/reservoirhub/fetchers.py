"""
Source fetchers: the single contract the prefetcher and the revalidation
controller use to obtain a ``SourceBundle`` for a source key.

A fetcher returns fresh data or raises ``UpstreamError``. When the source
degraded to an estimate, the raised error carries it as ``error.fallback``.
"""

import logging
from typing import Mapping, Optional

from .cache import TTLCache
from .client import UpstreamClient
from .config import HubConfig
from .exceptions import UnknownSourceError, UpstreamHttpError, error_from_kind
from .fallback import fetch_with_fallback
from .models import LAKE_LEVEL, OUTFLOW, WEATHER, SourceBundle
from .policy import FRESHNESS_POLICIES, FreshnessPolicy, policy_for

logger = logging.getLogger(__name__)

API_ENDPOINTS = {
    LAKE_LEVEL: "/api/lake-data",
    OUTFLOW: "/api/outflow",
    WEATHER: "/api/weather",
}


class SourceFetcher:
    """Base class for anything that can produce a bundle for a source key."""

    async def fetch(self, key: str) -> SourceBundle:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class DirectFetcher(SourceFetcher):
    """Calls the upstream adapters in-process, through the fallback wrapper."""

    def __init__(
        self,
        client: UpstreamClient,
        config: HubConfig,
        policies: Mapping[str, FreshnessPolicy] = FRESHNESS_POLICIES,
    ):
        self.client = client
        self.config = config
        self.policies = policies

    async def fetch(self, key: str) -> SourceBundle:
        result = await fetch_with_fallback(
            key, self.client, self.config, policy_for(key, self.policies)
        )
        if result.error is None and result.bundle is not None:
            return result.bundle
        raise error_from_kind(
            result.error,
            result.message or "Upstream fetch failed",
            source=key,
            fallback=result.bundle,
        )


class ApiFetcher(SourceFetcher):
    """
    Fetches from this service's own ``/api/*`` endpoints.

    This is what a browser session does after first paint; it is also how
    a separately deployed renderer builds its fallback snapshot.
    """

    def __init__(self, client: UpstreamClient, base_url: str):
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def fetch(self, key: str) -> SourceBundle:
        try:
            path = API_ENDPOINTS[key]
        except KeyError:
            raise UnknownSourceError(key) from None

        payload = await self.client.get_json(f"{self.base_url}{path}", source=key)
        bundle = SourceBundle.from_payload(key, payload)
        if bundle.degraded:
            error = UpstreamHttpError(
                f"Served estimated data: {bundle.note}", source=key
            )
            error.fallback = bundle
            raise error
        return bundle


class CachedFetcher(SourceFetcher):
    """Serves fresh bundles from a ``TTLCache`` for each source's cache window."""

    def __init__(
        self,
        inner: SourceFetcher,
        policies: Mapping[str, FreshnessPolicy] = FRESHNESS_POLICIES,
        cache: Optional[TTLCache] = None,
    ):
        self.inner = inner
        self.policies = policies
        self.cache: TTLCache = cache if cache is not None else TTLCache()

    async def fetch(self, key: str) -> SourceBundle:
        policy = policy_for(key, self.policies)
        return await self.cache.get_or_fetch(
            key, policy.cache_seconds, lambda: self.inner.fetch(key)
        )

    async def close(self) -> None:
        await self.inner.close()

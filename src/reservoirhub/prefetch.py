"""
Server-side prefetch of every source into a ``FallbackSnapshot``.

Runs at request or build time, before the first paint. All sources are fetched
concurrently and each one is isolated: a slow or failing source only leaves
its own snapshot field empty.
"""

import asyncio
import logging
from typing import Iterable, Mapping, Optional

from .client import UpstreamClient
from .config import HubConfig
from .exceptions import UpstreamError
from .fetchers import ApiFetcher, CachedFetcher, DirectFetcher, SourceFetcher
from .models import SOURCE_KEYS, FallbackSnapshot, SourceBundle
from .policy import FRESHNESS_POLICIES, FreshnessPolicy, policy_for
from .utils import add_sync_version, utcnow

logger = logging.getLogger(__name__)


class Prefetcher:
    """
    Best-effort concurrent fetch of all sources.

    Each source runs under its own timeout (the policy's ``timeout_seconds``)
    and, when ``fetcher`` is a ``CachedFetcher``, its own cache window.
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        policies: Mapping[str, FreshnessPolicy] = FRESHNESS_POLICIES,
        keys: Iterable[str] = SOURCE_KEYS,
    ):
        self.fetcher = fetcher
        self.policies = policies
        self.keys = tuple(keys)

    async def _fetch_one(self, key: str) -> Optional[SourceBundle]:
        timeout = policy_for(key, self.policies).timeout_seconds
        try:
            return await asyncio.wait_for(self.fetcher.fetch(key), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Prefetch of {key} timed out after {timeout}s")
            return None
        except UpstreamError as e:
            if e.fallback is not None:
                logger.info(f"Prefetch of {key} degraded to fallback: {e}")
                return e.fallback
            logger.warning(f"Prefetch of {key} failed: {e}")
            return None

    async def prefetch_all(self) -> FallbackSnapshot:
        """
        Fetch every source concurrently.

        Never raises: any source that fails (including unexpected errors) is
        simply absent from the returned snapshot.
        """
        results = await asyncio.gather(
            *(self._fetch_one(key) for key in self.keys), return_exceptions=True
        )

        snapshot = FallbackSnapshot(captured_at=utcnow())
        for key, result in zip(self.keys, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Unexpected error prefetching {key}",
                    exc_info=(type(result), result, result.__traceback__),
                )
                continue
            if result is not None:
                snapshot = snapshot.superseded(key, result)

        logger.info(
            f"Prefetched snapshot with sources: {snapshot.available_sources()}"
        )
        return snapshot


@add_sync_version
async def prefetch_snapshot(
    config: Optional[HubConfig] = None,
    client: Optional[UpstreamClient] = None,
    via_api: bool = False,
    policies: Mapping[str, FreshnessPolicy] = FRESHNESS_POLICIES,
) -> FallbackSnapshot:
    """
    Build a fallback snapshot in one call.

    Args:
        config: Reservoir configuration; read from the environment if omitted
        client: HTTP client. If not provided, creates a temporary client
        via_api: Fetch through this service's ``/api/*`` endpoints at
                 ``config.base_url`` instead of calling upstream directly
        policies: Freshness policy table

    Examples:
        >>> snapshot = prefetch_snapshot.sync()
        >>> snapshot.available_sources()
        ['lake-level', 'outflow', 'weather']
    """
    config = config or HubConfig.from_env()
    owns_client = client is None
    if client is None:
        client = UpstreamClient(user_agent=config.user_agent)

    if via_api:
        fetcher: SourceFetcher = ApiFetcher(client, config.base_url)
    else:
        fetcher = CachedFetcher(DirectFetcher(client, config, policies), policies)

    try:
        return await Prefetcher(fetcher, policies).prefetch_all()
    finally:
        if owns_client:
            await client.close()

"""
Upstream adapters, one per data source.

Every adapter has the same contract::

    async def fetch_x(client, config, timeout=..., now=None) -> SourceBundle

and raises an ``UpstreamError`` subclass on failure. Degrading to a fallback
value is not the adapter's job; see ``reservoirhub.fallback``.

Data sources:
- Lake level, inflow, outflow: USACE CWMS 'recent' timeseries
- Projected daily outflow: USACE CWMS timeseries
- Weather: National Weather Service gridpoint forecast
"""

from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from ..client import UpstreamClient
from ..config import HubConfig
from ..exceptions import UnknownSourceError
from ..models import LAKE_LEVEL, OUTFLOW, WEATHER, SourceBundle
from .cwms import fetch_lake_level, fetch_outflow
from .nws import fetch_weather

Adapter = Callable[..., Awaitable[SourceBundle]]

ADAPTERS: Dict[str, Adapter] = {
    LAKE_LEVEL: fetch_lake_level,
    OUTFLOW: fetch_outflow,
    WEATHER: fetch_weather,
}


async def fetch_source(
    key: str,
    client: UpstreamClient,
    config: HubConfig,
    timeout: Optional[float] = None,
    now: Optional[datetime] = None,
) -> SourceBundle:
    """Run the adapter registered for ``key``."""
    try:
        adapter = ADAPTERS[key]
    except KeyError:
        raise UnknownSourceError(key) from None
    if timeout is None:
        return await adapter(client, config, now=now)
    return await adapter(client, config, timeout=timeout, now=now)


__all__ = [
    "ADAPTERS",
    "Adapter",
    "fetch_lake_level",
    "fetch_outflow",
    "fetch_source",
    "fetch_weather",
]

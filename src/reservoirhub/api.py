"""
Inbound HTTP surface.

Run:  uvicorn reservoirhub.api:app --port 3000

Routes:
    GET /api/lake-data   pool elevation, inflow/outflow, water temp, 24h rain
    GET /api/outflow     projected daily discharge
    GET /api/weather     current conditions and short forecast
    GET /api/snapshot    all sources prefetched (initial page payload)
    GET /api/policies    the freshness policy table clients poll by
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, Mapping, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .cache import TTLCache
from .client import UpstreamClient
from .config import HubConfig
from .exceptions import UpstreamError
from .fetchers import CachedFetcher, DirectFetcher
from .models import LAKE_LEVEL, OUTFLOW, WEATHER
from .policy import FRESHNESS_POLICIES, FreshnessPolicy
from .prefetch import Prefetcher
from .scheduler import Clock

logger = logging.getLogger(__name__)

ERROR_MESSAGES = {
    LAKE_LEVEL: "Failed to fetch lake data",
    OUTFLOW: "Failed to fetch outflow data",
    WEATHER: "Failed to fetch weather data",
}


def create_app(
    config: Optional[HubConfig] = None,
    policies: Optional[Mapping[str, FreshnessPolicy]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Reservoir configuration; read from the environment if omitted
        policies: Freshness policy table (server cache windows and timeouts)
        transport: httpx transport for upstream calls (tests use MockTransport)
        clock: Clock for the server-side cache
    """
    config = config or HubConfig.from_env()
    policy_table = dict(policies or FRESHNESS_POLICIES)
    cache: TTLCache = TTLCache(clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """One shared upstream client for the lifetime of the process."""
        client = UpstreamClient(user_agent=config.user_agent, transport=transport)
        fetcher = CachedFetcher(
            DirectFetcher(client, config, policy_table), policy_table, cache
        )
        app.state.fetcher = fetcher
        app.state.prefetcher = Prefetcher(fetcher, policy_table)
        logger.info("Upstream client initialised.")
        yield
        await client.close()
        logger.info("Upstream client closed.")

    app = FastAPI(
        title="Reservoir Hub API",
        description="Lake level, outflow and weather for Barren River Lake.",
        version="1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.cache = cache

    async def serve(request: Request, key: str) -> JSONResponse:
        try:
            bundle = await request.app.state.fetcher.fetch(key)
        except UpstreamError as e:
            if e.fallback is not None:
                logger.info(f"Returning fallback {key} data")
                return JSONResponse(e.fallback.to_payload())
            logger.error(f"Failed to fetch {key} data: {e}")
            return JSONResponse({"error": ERROR_MESSAGES[key]}, status_code=500)
        return JSONResponse(bundle.to_payload())

    @app.get("/api/lake-data")
    async def lake_data(request: Request) -> JSONResponse:
        return await serve(request, LAKE_LEVEL)

    @app.get("/api/outflow")
    async def outflow(request: Request) -> JSONResponse:
        return await serve(request, OUTFLOW)

    @app.get("/api/weather")
    async def weather(request: Request) -> JSONResponse:
        return await serve(request, WEATHER)

    @app.get("/api/snapshot")
    async def snapshot(request: Request) -> Dict[str, Any]:
        result = await request.app.state.prefetcher.prefetch_all()
        return result.to_payload()

    @app.get("/api/policies")
    async def policies_table() -> Dict[str, Dict[str, Any]]:
        return {key: asdict(policy) for key, policy in policy_table.items()}

    return app


app = create_app()

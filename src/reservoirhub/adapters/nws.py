"""
National Weather Service (api.weather.gov) forecast adapter.

The forecast endpoint for a location is not fixed: it is resolved through a
``/points/{lat},{lon}`` lookup first, then fetched.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..client import UpstreamClient
from ..config import HubConfig
from ..exceptions import UpstreamMalformedResponse
from ..models import WEATHER, ForecastPeriod, Observation, SourceBundle
from ..utils import parse_timestamp, to_float, utcnow

logger = logging.getLogger(__name__)

WEATHER_TIMEOUT = 15.0


def _fahrenheit(period: Dict[str, Any]) -> Optional[float]:
    temperature = to_float(period.get("temperature"))
    if temperature is not None and period.get("temperatureUnit") == "C":
        temperature = round(temperature * 9.0 / 5.0 + 32.0, 1)
    return temperature


def _text(period: Dict[str, Any], key: str) -> Optional[str]:
    value = period.get(key)
    return value if isinstance(value, str) else None


async def resolve_forecast_url(
    client: UpstreamClient, config: HubConfig, timeout: float = WEATHER_TIMEOUT
) -> str:
    """Look up the gridpoint forecast URL for the configured coordinates."""
    points = await client.get_json(
        f"{config.nws_base_url}/points/{config.latitude},{config.longitude}",
        timeout=timeout,
        source=WEATHER,
    )
    try:
        forecast_url = points["properties"]["forecast"]
    except (KeyError, TypeError) as e:
        raise UpstreamMalformedResponse(
            "Points lookup has no forecast URL", source=WEATHER
        ) from e
    if not isinstance(forecast_url, str) or not forecast_url:
        raise UpstreamMalformedResponse(
            "Points lookup has no forecast URL", source=WEATHER
        )
    return forecast_url


async def fetch_weather(
    client: UpstreamClient,
    config: HubConfig,
    timeout: float = WEATHER_TIMEOUT,
    now: Optional[datetime] = None,
) -> SourceBundle:
    """
    Fetch current conditions and the next few forecast periods.

    The first forecast period is treated as current conditions; the following
    ``config.forecast_periods`` periods become the short forecast list.
    Temperatures are always reported in Fahrenheit.

    Raises:
        UpstreamError: When either request fails or the forecast has no periods
    """
    fetched_at = now or utcnow()
    forecast_url = await resolve_forecast_url(client, config, timeout=timeout)

    forecast = await client.get_json(
        forecast_url, params={"units": "us"}, timeout=timeout, source=WEATHER
    )
    try:
        properties = forecast["properties"]
        periods: List[Dict[str, Any]] = properties["periods"]
    except (KeyError, TypeError) as e:
        raise UpstreamMalformedResponse(
            "Forecast has no periods", source=WEATHER
        ) from e
    if not isinstance(periods, list) or not periods or not isinstance(periods[0], dict):
        raise UpstreamMalformedResponse("Forecast has no periods", source=WEATHER)

    current = periods[0]
    observed_at = (
        parse_timestamp(properties.get("updateTime"))
        or parse_timestamp(properties.get("generatedAt"))
        or fetched_at
    )

    observations = {
        "temperature": Observation(_fahrenheit(current), observed_at, "degF"),
        "wind_speed": Observation(_text(current, "windSpeed"), observed_at),
        "wind_direction": Observation(_text(current, "windDirection"), observed_at),
        "short_forecast": Observation(_text(current, "shortForecast"), observed_at),
    }

    upcoming = [
        ForecastPeriod(
            name=_text(p, "name") or "",
            short_forecast=_text(p, "shortForecast"),
            temperature=_fahrenheit(p),
        )
        for p in periods[1 : 1 + config.forecast_periods]
        if isinstance(p, dict)
    ]

    logger.debug(
        f"Weather: {observations['temperature'].value}F, "
        f"{len(upcoming)} forecast periods"
    )
    return SourceBundle(
        source=WEATHER,
        observations=observations,
        last_updated=fetched_at,
        forecast=upcoming,
    )

"""
Shared fixtures and canned upstream responses for reservoirhub tests.
"""

import asyncio
import json
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from reservoirhub.client import UpstreamClient
from reservoirhub.config import HubConfig
from reservoirhub.fetchers import SourceFetcher
from reservoirhub.models import (
    LAKE_LEVEL,
    OUTFLOW,
    WEATHER,
    ForecastPeriod,
    Observation,
    SourceBundle,
)

NOW = datetime(2026, 10, 17, 15, 0, 0, tzinfo=timezone.utc)

FORECAST_URL = "https://api.weather.gov/gridpoints/LMK/40,30/forecast"

LAKE_RECENT = [
    {
        "id": "Barren.Elev.Inst.0.0.lrldlb-rev",
        "dqu": {"value": 552.31, "date-time": 1760709600000},
    },
    {
        "id": "Barren.Flow-Inflow.Ave.1Hour.6Hours.lrldlb-comp",
        "dqu": {"value": 1210.0},
    },
    {
        "id": "Barren.Flow-Outflow.Ave.1Hour.1Hour.lrldlb-comp",
        "dqu": {"value": 905.0},
    },
]

OUTFLOW_SERIES = {
    "name": "Barren.Flow-Out.Ave.1Day.1Day.lrldlb-rev",
    "units": "cfs",
    "values": [
        [1760612400000, 800.0, 0],
        [1760698800000, 850.0, 0],
        [1760785200000, None, 0],
    ],
}

POINTS = {"properties": {"forecast": FORECAST_URL}}

FORECAST = {
    "properties": {
        "updateTime": "2026-10-17T14:00:00+00:00",
        "periods": [
            {
                "name": "This Afternoon",
                "temperature": 71,
                "temperatureUnit": "F",
                "windSpeed": "5 to 10 mph",
                "windDirection": "SW",
                "shortForecast": "Mostly Sunny",
            },
            {"name": "Tonight", "temperature": 52, "temperatureUnit": "F", "shortForecast": "Clear"},
            {"name": "Saturday", "temperature": 74, "temperatureUnit": "F", "shortForecast": "Sunny"},
            {"name": "Saturday Night", "temperature": 55, "temperatureUnit": "F", "shortForecast": "Partly Cloudy"},
            {"name": "Sunday", "temperature": 70, "temperatureUnit": "F", "shortForecast": "Chance Showers"},
        ],
    }
}


class UpstreamStub:
    """
    Routes httpx requests to canned responses by URL path.

    ``overrides`` maps a route name (``recent``, ``series``, ``points``,
    ``forecast``) to a status code, an httpx exception class to raise, a raw
    text body, or a JSON body.
    """

    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        self.overrides = overrides or {}
        self.requests = []

    BODIES = {
        "recent": LAKE_RECENT,
        "series": OUTFLOW_SERIES,
        "points": POINTS,
        "forecast": FORECAST,
    }

    @staticmethod
    def route(path: str) -> Optional[str]:
        if path.endswith("/timeseries/recent"):
            return "recent"
        if path.endswith("/timeseries"):
            return "series"
        if "/points/" in path:
            return "points"
        if path.endswith("/forecast"):
            return "forecast"
        return None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.route(request.url.path)
        if route in self.overrides:
            override = self.overrides[route]
            if isinstance(override, int):
                return httpx.Response(override, text="upstream error")
            if isinstance(override, type) and issubclass(override, Exception):
                raise override("stubbed failure", request=request)
            if isinstance(override, str):
                return httpx.Response(200, text=override)
            return httpx.Response(200, json=override)
        body = self.BODIES.get(route)
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=json.dumps(body).encode(), headers={"content-type": "application/json"})

    def count(self, route: str) -> int:
        return sum(1 for r in self.requests if self.route(r.url.path) == route)


@pytest.fixture
def config():
    """Default reservoir configuration."""
    return HubConfig()


@pytest.fixture
def stub():
    return UpstreamStub()


def make_client(handler: Callable[[httpx.Request], Any]) -> UpstreamClient:
    return UpstreamClient(timeout=5, transport=httpx.MockTransport(handler))


def make_bundle(key: str, last_updated: datetime = NOW, **values: Any) -> SourceBundle:
    """Build a bundle for ``key`` with the given observation values."""
    defaults: Dict[str, Dict[str, Any]] = {
        LAKE_LEVEL: {"level": 552.3, "inflow": 1200.0, "outflow": 900.0, "water_temp": None, "rain_24h": None},
        OUTFLOW: {"outflow": 850.0},
        WEATHER: {"temperature": 71.0, "wind_speed": "5 mph", "wind_direction": "SW", "short_forecast": "Sunny"},
    }
    merged = dict(defaults[key])
    merged.update(values)
    forecast = []
    if key == WEATHER:
        forecast = [ForecastPeriod("Tonight", "Clear", 52.0)]
    return SourceBundle(
        source=key,
        observations={
            name: Observation(value=value, observed_at=last_updated)
            for name, value in merged.items()
        },
        last_updated=last_updated,
        forecast=forecast,
    )


class FakeFetcher(SourceFetcher):
    """
    In-memory fetcher with scripted outcomes per source key.

    Each key has a queue of outcomes (a bundle or an exception to raise); the
    last outcome repeats once the queue is down to one. A key listed in
    ``gates`` blocks its first call until the event is set.
    """

    def __init__(self, outcomes: Optional[Dict[str, Any]] = None):
        self.outcomes: Dict[str, List[Any]] = {
            key: list(value) if isinstance(value, list) else [value]
            for key, value in (outcomes or {}).items()
        }
        self.calls: Counter = Counter()
        self.gates: Dict[str, asyncio.Event] = {}

    async def fetch(self, key: str) -> SourceBundle:
        self.calls[key] += 1
        queue = self.outcomes.get(key) or [make_bundle(key)]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        gate = self.gates.pop(key, None)
        if gate is not None:
            await gate.wait()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


async def drain(controller) -> None:
    """Wait until the controller has no fetch in flight."""
    while any(not task.done() for task in controller._tasks.values()):
        await asyncio.gather(*list(controller._tasks.values()), return_exceptions=True)

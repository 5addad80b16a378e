"""
Data models for reservoir observations, source bundles and client cache state.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ErrorKind, UnknownSourceError, UpstreamMalformedResponse
from .utils import isoformat, parse_timestamp, to_float, utcnow

LAKE_LEVEL = "lake-level"
OUTFLOW = "outflow"
WEATHER = "weather"

SOURCE_KEYS: Tuple[str, ...] = (LAKE_LEVEL, OUTFLOW, WEATHER)

# (quantity, payload field, unit) per source, in payload order
PAYLOAD_FIELDS: Dict[str, List[Tuple[str, str, Optional[str]]]] = {
    LAKE_LEVEL: [
        ("level", "level", "ft"),
        ("inflow", "inflow", "cfs"),
        ("outflow", "outflow", "cfs"),
        ("water_temp", "waterTemp", "degF"),
        ("rain_24h", "rain24h", "in"),
    ],
    OUTFLOW: [
        ("outflow", "outflow", "cfs"),
    ],
    WEATHER: [
        ("temperature", "temperature", "degF"),
        ("wind_speed", "windSpeed", None),
        ("wind_direction", "windDirection", None),
        ("short_forecast", "shortForecast", None),
    ],
}

# Quantities carried as text rather than numbers
TEXT_QUANTITIES = {"wind_speed", "wind_direction", "short_forecast"}


def _optional_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _check_source(source: str) -> None:
    if source not in PAYLOAD_FIELDS:
        raise UnknownSourceError(source)


@dataclass
class Observation:
    """A single measurement of one quantity at a point in time."""

    value: Any
    observed_at: datetime
    unit: Optional[str] = None
    note: Optional[str] = None

    @property
    def available(self) -> bool:
        """A missing value is shown as unavailable, never as zero."""
        return self.value is not None


@dataclass
class ForecastPeriod:
    """One named forecast period (e.g. "Tonight")."""

    name: str
    short_forecast: Optional[str]
    temperature: Optional[float]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "shortForecast": self.short_forecast,
            "temperature": self.temperature,
        }


@dataclass
class SourceBundle:
    """All observations produced by one upstream source in one fetch."""

    source: str
    observations: Dict[str, Observation]
    last_updated: datetime
    note: Optional[str] = None
    forecast: List[ForecastPeriod] = field(default_factory=list)
    degraded: bool = False

    def value(self, quantity: str) -> Any:
        obs = self.observations.get(quantity)
        return obs.value if obs is not None else None

    def values(self) -> Dict[str, Any]:
        """Observation values and forecast content, without timestamps."""
        result: Dict[str, Any] = {
            name: obs.value for name, obs in self.observations.items()
        }
        if self.source == WEATHER:
            result["forecast"] = [p.to_payload() for p in self.forecast]
        return result

    def to_payload(self) -> Dict[str, Any]:
        """Render the JSON body served for this source by the inbound API."""
        payload: Dict[str, Any] = {}
        for quantity, key, _unit in PAYLOAD_FIELDS[self.source]:
            payload[key] = self.value(quantity)
        if self.source == WEATHER:
            payload["forecast"] = [p.to_payload() for p in self.forecast]
        payload["lastUpdated"] = isoformat(self.last_updated)
        if self.note is not None or self.source == OUTFLOW:
            payload["note"] = self.note or ""
        payload["degraded"] = self.degraded
        return payload

    @classmethod
    def from_payload(cls, source: str, payload: Any) -> "SourceBundle":
        """Rebuild a bundle from an inbound API JSON body."""
        _check_source(source)
        if not isinstance(payload, dict):
            raise UpstreamMalformedResponse(
                "Expected a JSON object", source=source
            )
        if "error" in payload and "lastUpdated" not in payload:
            raise UpstreamMalformedResponse(
                f"Error payload: {payload['error']}", source=source
            )

        last_updated = parse_timestamp(payload.get("lastUpdated")) or utcnow()
        note = payload.get("note") or None

        observations: Dict[str, Observation] = {}
        for quantity, key, unit in PAYLOAD_FIELDS[source]:
            raw = payload.get(key)
            if quantity in TEXT_QUANTITIES:
                value = raw if isinstance(raw, str) else None
            else:
                value = to_float(raw)
            observations[quantity] = Observation(
                value=value, observed_at=last_updated, unit=unit
            )

        forecast: List[ForecastPeriod] = []
        for item in payload.get("forecast") or []:
            if not isinstance(item, dict):
                continue
            forecast.append(
                ForecastPeriod(
                    name=_optional_text(item.get("name")) or "",
                    short_forecast=_optional_text(item.get("shortForecast")),
                    temperature=to_float(item.get("temperature")),
                )
            )

        return cls(
            source=source,
            observations=observations,
            last_updated=last_updated,
            note=note,
            forecast=forecast,
            degraded=bool(payload.get("degraded", False)),
        )


# source key -> FallbackSnapshot attribute
_SNAPSHOT_FIELDS = {
    LAKE_LEVEL: "lake_level",
    OUTFLOW: "outflow",
    WEATHER: "weather",
}


@dataclass(frozen=True)
class FallbackSnapshot:
    """
    Server-produced union of source bundles captured at render time.

    Never mutated: ``superseded`` returns a new snapshot with one field replaced.
    Any field may be ``None`` when that source failed during prefetch.
    """

    lake_level: Optional[SourceBundle] = None
    outflow: Optional[SourceBundle] = None
    weather: Optional[SourceBundle] = None
    captured_at: datetime = field(default_factory=utcnow)

    def get(self, key: str) -> Optional[SourceBundle]:
        try:
            return getattr(self, _SNAPSHOT_FIELDS[key])
        except KeyError:
            raise UnknownSourceError(key) from None

    def superseded(self, key: str, bundle: Optional[SourceBundle]) -> "FallbackSnapshot":
        if key not in _SNAPSHOT_FIELDS:
            raise UnknownSourceError(key)
        return replace(self, **{_SNAPSHOT_FIELDS[key]: bundle})

    def available_sources(self) -> List[str]:
        return [key for key in SOURCE_KEYS if self.get(key) is not None]

    def values(self) -> Dict[str, Optional[Dict[str, Any]]]:
        """Per-source values without timestamps (for idempotence checks)."""
        result: Dict[str, Optional[Dict[str, Any]]] = {}
        for key in SOURCE_KEYS:
            bundle = self.get(key)
            result[key] = bundle.values() if bundle is not None else None
        return result

    def to_payload(self) -> Dict[str, Any]:
        """JSON form embedded in the initial page payload; absent sources are omitted."""
        payload: Dict[str, Any] = {"capturedAt": isoformat(self.captured_at)}
        for key in SOURCE_KEYS:
            bundle = self.get(key)
            if bundle is not None:
                payload[key] = bundle.to_payload()
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "FallbackSnapshot":
        kwargs: Dict[str, Any] = {}
        for key, attr in _SNAPSHOT_FIELDS.items():
            body = payload.get(key)
            if body is None:
                continue
            try:
                kwargs[attr] = SourceBundle.from_payload(key, body)
            except UpstreamMalformedResponse:
                continue
        captured_at = parse_timestamp(payload.get("capturedAt"))
        if captured_at is not None:
            kwargs["captured_at"] = captured_at
        return cls(**kwargs)


@dataclass
class CacheEntry:
    """Client-side cache state for one source key."""

    data: Optional[SourceBundle] = None
    error: Optional[ErrorKind] = None
    is_validating: bool = False
    last_fetched_at: Optional[float] = None
    last_started_at: Optional[float] = None
    last_settled_at: Optional[float] = None
    generation: int = 0
    seeded: bool = False


@dataclass(frozen=True)
class SourceState:
    """Read-only view of one source handed to the presentation layer."""

    data: Optional[SourceBundle]
    error: Optional[ErrorKind]
    is_loading: bool
    is_validating: bool

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "SourceState":
        return cls(
            data=entry.data,
            error=entry.error,
            is_loading=entry.data is None,
            is_validating=entry.is_validating,
        )


@dataclass(frozen=True)
class TrendAnnotation:
    """Change of a quantity against its value 24 hours earlier."""

    delta: float
    direction: str  # 'up', 'down' or 'steady'

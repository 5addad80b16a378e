"""
Tests for bundles, snapshots and cache state models.
"""

import pytest

from conftest import NOW, make_bundle
from reservoirhub.exceptions import ErrorKind, UnknownSourceError, UpstreamMalformedResponse, error_from_kind
from reservoirhub.models import (
    LAKE_LEVEL,
    OUTFLOW,
    WEATHER,
    CacheEntry,
    FallbackSnapshot,
    SourceBundle,
    SourceState,
)
from reservoirhub.utils import isoformat, parse_timestamp, to_float


class TestSourceBundle:
    def test_lake_payload_keys(self):
        payload = make_bundle(LAKE_LEVEL, water_temp=71.5).to_payload()

        assert payload["level"] == 552.3
        assert payload["waterTemp"] == 71.5
        assert payload["rain24h"] is None
        assert payload["lastUpdated"] == "2026-10-17T15:00:00.000Z"
        assert "note" not in payload
        assert "forecast" not in payload

    def test_outflow_payload_always_has_note(self):
        assert make_bundle(OUTFLOW).to_payload()["note"] == ""

    def test_from_payload(self):
        bundle = SourceBundle.from_payload(
            WEATHER,
            {
                "temperature": "68",
                "windSpeed": "10 mph",
                "windDirection": None,
                "shortForecast": "Rain",
                "forecast": [{"name": "Tonight", "shortForecast": "Rain", "temperature": 55}],
                "lastUpdated": "2026-10-17T15:00:00.000Z",
            },
        )

        assert bundle.value("temperature") == 68.0
        assert bundle.value("wind_direction") is None
        assert bundle.last_updated == NOW
        assert bundle.forecast[0].temperature == 55.0
        assert not bundle.degraded

    def test_null_forecast_text(self):
        bundle = SourceBundle.from_payload(
            WEATHER,
            {
                "temperature": 68,
                "shortForecast": None,
                "forecast": [{"name": None, "shortForecast": None, "temperature": 55}],
                "lastUpdated": "2026-10-17T15:00:00.000Z",
            },
        )

        assert bundle.value("short_forecast") is None
        assert bundle.forecast[0].short_forecast is None
        assert bundle.forecast[0].name == ""

    def test_from_error_payload(self):
        with pytest.raises(UpstreamMalformedResponse):
            SourceBundle.from_payload(WEATHER, {"error": "Failed to fetch weather data"})
        with pytest.raises(UpstreamMalformedResponse):
            SourceBundle.from_payload(OUTFLOW, ["not", "an", "object"])
        with pytest.raises(UnknownSourceError):
            SourceBundle.from_payload("snowpack", {})

    def test_values_exclude_timestamps(self):
        earlier = make_bundle(LAKE_LEVEL, last_updated=NOW.replace(hour=9))
        later = make_bundle(LAKE_LEVEL)
        assert earlier.values() == later.values()


class TestFallbackSnapshot:
    def test_superseded_returns_new_snapshot(self):
        empty = FallbackSnapshot(captured_at=NOW)
        bundle = make_bundle(OUTFLOW)

        updated = empty.superseded(OUTFLOW, bundle)

        assert empty.outflow is None
        assert updated.outflow is bundle
        assert updated.available_sources() == [OUTFLOW]

    def test_payload_omits_absent_sources(self):
        snapshot = FallbackSnapshot(lake_level=make_bundle(LAKE_LEVEL), captured_at=NOW)
        payload = snapshot.to_payload()

        assert set(payload) == {"capturedAt", LAKE_LEVEL}

        restored = FallbackSnapshot.from_payload(payload)
        assert restored.captured_at == NOW
        assert restored.values() == snapshot.values()

    def test_from_payload_skips_error_bodies(self):
        restored = FallbackSnapshot.from_payload(
            {"weather": {"error": "Failed to fetch weather data"}}
        )
        assert restored.weather is None

    def test_unknown_key(self):
        with pytest.raises(UnknownSourceError):
            FallbackSnapshot().get("snowpack")


class TestSourceState:
    def test_loading_only_without_data(self):
        entry = CacheEntry(error=ErrorKind.UPSTREAM_TIMEOUT)
        assert SourceState.from_entry(entry).is_loading

        entry.data = make_bundle(OUTFLOW)
        state = SourceState.from_entry(entry)
        assert not state.is_loading
        assert state.error == ErrorKind.UPSTREAM_TIMEOUT


class TestErrors:
    def test_error_from_kind(self):
        fallback = make_bundle(OUTFLOW)
        error = error_from_kind(
            ErrorKind.NETWORK_UNAVAILABLE, "offline", source=OUTFLOW, fallback=fallback
        )
        assert error.kind == ErrorKind.NETWORK_UNAVAILABLE
        assert error.fallback is fallback
        assert str(error) == "[outflow] offline"

    def test_unknown_source_message(self):
        assert str(UnknownSourceError("snowpack")) == "Unknown source key: 'snowpack'"


class TestUtils:
    def test_isoformat_naive_is_utc(self):
        assert isoformat(NOW.replace(tzinfo=None)) == "2026-10-17T15:00:00.000Z"

    def test_parse_timestamp(self):
        assert parse_timestamp("2026-10-17T15:00:00Z") == NOW
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(None) is None

    def test_to_float(self):
        assert to_float("545.2") == 545.2
        assert to_float(True) is None
        assert to_float(float("nan")) is None
        assert to_float("n/a") is None

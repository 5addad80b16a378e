"""
Tests for the freshness policy table and its overrides.
"""

import json

import pytest

from reservoirhub.config import BASE_URL_ENV, HubConfig
from reservoirhub.exceptions import PolicyError
from reservoirhub.models import LAKE_LEVEL, OUTFLOW, SOURCE_KEYS, WEATHER
from reservoirhub.policy import (
    FRESHNESS_POLICIES,
    load_policy_file,
    load_policy_table,
    policy_for,
)


class TestFreshnessPolicies:
    def test_one_row_per_source(self):
        assert set(FRESHNESS_POLICIES) == set(SOURCE_KEYS)

    def test_lake_level_row(self):
        policy = FRESHNESS_POLICIES[LAKE_LEVEL]
        assert policy.poll_interval == 15 * 60
        assert policy.dedup_window == 5
        assert policy.revalidate_on_focus
        assert policy.revalidate_on_reconnect
        assert policy.max_retries == 3
        assert policy.retry_backoff == 5
        assert policy.cache_seconds == 900

    def test_outflow_row(self):
        policy = FRESHNESS_POLICIES[OUTFLOW]
        assert policy.poll_interval == 60 * 60
        assert policy.dedup_window == 60
        assert not policy.revalidate_on_focus
        assert policy.revalidate_on_reconnect
        assert policy.max_retries == 2
        # server caches the daily projection for a day
        assert policy.cache_seconds == 86400

    def test_weather_row(self):
        policy = FRESHNESS_POLICIES[WEATHER]
        assert policy.poll_interval == 10 * 60
        assert policy.dedup_window == 5
        assert policy.max_retries == 3
        assert not policy.degrade_to_fallback


class TestPolicyOverrides:
    def test_snake_case_override(self):
        table = load_policy_table({LAKE_LEVEL: {"poll_interval": 300}})

        assert table[LAKE_LEVEL].poll_interval == 300
        assert table[LAKE_LEVEL].max_retries == 3
        # base table untouched
        assert FRESHNESS_POLICIES[LAKE_LEVEL].poll_interval == 900

    def test_millisecond_aliases(self):
        table = load_policy_table(
            {WEATHER: {"pollIntervalMs": 120000, "dedupWindowMs": 2000, "revalidateOnFocus": False}}
        )

        assert table[WEATHER].poll_interval == 120
        assert table[WEATHER].dedup_window == 2
        assert not table[WEATHER].revalidate_on_focus

    def test_unknown_source(self):
        with pytest.raises(PolicyError, match="Unknown source key"):
            load_policy_table({"snowpack": {"poll_interval": 10}})

    def test_unknown_column(self):
        with pytest.raises(PolicyError, match="Unknown policy column"):
            load_policy_table({OUTFLOW: {"refresh": 10}})

    def test_invalid_value(self):
        with pytest.raises(PolicyError):
            load_policy_table({OUTFLOW: {"max_retries": -1}})
        with pytest.raises(PolicyError):
            load_policy_table({OUTFLOW: {"poll_interval": 0}})

    def test_load_policy_file(self, tmp_path):
        path = tmp_path / "policies.json"
        path.write_text(json.dumps({OUTFLOW: {"maxRetries": 5}}))

        table = load_policy_file(path)
        assert table[OUTFLOW].max_retries == 5

    def test_load_policy_file_invalid(self, tmp_path):
        path = tmp_path / "policies.json"
        path.write_text("[1, 2]")
        with pytest.raises(PolicyError):
            load_policy_file(path)
        with pytest.raises(PolicyError, match="Could not read"):
            load_policy_file(tmp_path / "missing.json")

    def test_policy_for_unknown(self):
        with pytest.raises(PolicyError):
            policy_for("snowpack")


class TestHubConfig:
    def test_from_env(self):
        config = HubConfig.from_env({BASE_URL_ENV: "https://lake.example.org/"})
        assert config.base_url == "https://lake.example.org"

    def test_from_env_default(self):
        assert HubConfig.from_env({}).base_url == "http://localhost:3000"

    def test_lake_series_optional_ids(self):
        config = HubConfig(rain_24h_ts_id="Barren.Precip.Total.1Day.1Day.lrldlb-rev")
        series = config.lake_series()
        assert series["rain_24h"] == "Barren.Precip.Total.1Day.1Day.lrldlb-rev"
        assert "water_temp" not in series

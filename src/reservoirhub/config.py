"""
Static configuration for the reservoir dashboard backend.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

BASE_URL_ENV = "RESERVOIRHUB_API_URL"
DEFAULT_BASE_URL = "http://localhost:3000"

CWMS_BASE_URL = "https://cwms-data.usace.army.mil/cwms-data"
NWS_BASE_URL = "https://api.weather.gov"


@dataclass
class HubConfig:
    """
    Configuration for one reservoir.

    Timeseries identifiers follow the USACE CWMS naming scheme
    (``Location.Parameter.Type.Interval.Duration.Version``). The water
    temperature and 24h rainfall series are optional; when unset, those
    observations are reported as unavailable rather than invented.
    """

    base_url: str = DEFAULT_BASE_URL
    user_agent: str = "Barren-River-Lake-Hub/1.0"
    cwms_base_url: str = CWMS_BASE_URL
    nws_base_url: str = NWS_BASE_URL
    office: str = "LRL"
    unit_system: str = "EN"
    timeseries_ids: Dict[str, str] = field(
        default_factory=lambda: {
            "level": "Barren.Elev.Inst.0.0.lrldlb-rev",
            "inflow": "Barren.Flow-Inflow.Ave.1Hour.6Hours.lrldlb-comp",
            "outflow": "Barren.Flow-Outflow.Ave.1Hour.1Hour.lrldlb-comp",
        }
    )
    water_temp_ts_id: Optional[str] = None
    rain_24h_ts_id: Optional[str] = None
    daily_outflow_ts_id: str = "Barren.Flow-Out.Ave.1Day.1Day.lrldlb-rev"
    # Dam operations run 6am to 6am local time
    operations_day_start_hour: int = 6
    local_timezone: str = "America/Chicago"
    latitude: float = 36.89
    longitude: float = -86.12
    forecast_periods: int = 3
    trend_threshold: float = 0.0

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "HubConfig":
        """Build a config, taking the same-origin base URL from the environment."""
        env = os.environ if environ is None else environ
        base_url = env.get(BASE_URL_ENV) or DEFAULT_BASE_URL
        return cls(base_url=base_url.rstrip("/"))

    def lake_series(self) -> Dict[str, str]:
        """Quantity -> timeseries id for the lake-level 'recent' request."""
        series = dict(self.timeseries_ids)
        if self.water_temp_ts_id:
            series["water_temp"] = self.water_temp_ts_id
        if self.rain_24h_ts_id:
            series["rain_24h"] = self.rain_24h_ts_id
        return series

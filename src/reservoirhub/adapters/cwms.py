"""
USACE CWMS Data API adapters: lake level telemetry and projected daily outflow.

API Documentation:
- CWMS Data API: https://cwms-data.usace.army.mil/cwms-data/swagger-ui.html
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import pandas as pd

from ..client import UpstreamClient
from ..config import HubConfig
from ..exceptions import UpstreamMalformedResponse
from ..models import LAKE_LEVEL, OUTFLOW, PAYLOAD_FIELDS, Observation, SourceBundle
from ..utils import isoformat, parse_timestamp, to_float, utcnow

logger = logging.getLogger(__name__)

LAKE_TIMEOUT = 10.0
OUTFLOW_TIMEOUT = 15.0

PROJECTED_OUTFLOW_NOTE = "Projected 6am discharge rate"


def _recent_item_time(item: Dict[str, Any]) -> Optional[datetime]:
    dqu = item.get("dqu") or {}
    for key in ("date-time", "dateTime", "date"):
        raw = dqu.get(key)
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return datetime.fromtimestamp(raw / 1000.0, tz=timezone.utc)
        parsed = parse_timestamp(raw)
        if parsed is not None:
            return parsed
    return None


async def fetch_lake_level(
    client: UpstreamClient,
    config: HubConfig,
    timeout: float = LAKE_TIMEOUT,
    now: Optional[datetime] = None,
) -> SourceBundle:
    """
    Fetch current pool elevation, inflow and outflow in one 'recent' request.

    Args:
        client: HTTP client
        config: Reservoir configuration (office, timeseries ids, unit system)
        timeout: Request timeout in seconds
        now: Fetch time stamped on the bundle (defaults to the current time)

    Returns:
        SourceBundle for ``lake-level``; quantities the upstream did not report
        carry a ``None`` value

    Raises:
        UpstreamError: On timeout, HTTP failure, or when none of the requested
                       series appear in the response
    """
    fetched_at = now or utcnow()
    series = config.lake_series()
    params = {
        "office": config.office,
        "ts-ids": ",".join(series.values()),
        "unit": config.unit_system,
    }

    data = await client.get_json(
        f"{config.cwms_base_url}/timeseries/recent",
        params=params,
        timeout=timeout,
        source=LAKE_LEVEL,
    )
    if not isinstance(data, list):
        raise UpstreamMalformedResponse(
            "Expected a list of recent values", source=LAKE_LEVEL
        )

    by_id: Dict[str, Dict[str, Any]] = {}
    for item in data:
        if isinstance(item, dict) and item.get("id") and isinstance(item.get("dqu"), dict):
            by_id[item["id"]] = item

    if not any(ts_id in by_id for ts_id in series.values()):
        raise UpstreamMalformedResponse(
            "None of the requested timeseries were returned", source=LAKE_LEVEL
        )

    observations: Dict[str, Observation] = {}
    for quantity, _key, unit in PAYLOAD_FIELDS[LAKE_LEVEL]:
        ts_id = series.get(quantity)
        item = by_id.get(ts_id) if ts_id else None
        if item is None:
            observations[quantity] = Observation(None, fetched_at, unit)
            continue
        observations[quantity] = Observation(
            value=to_float(item["dqu"].get("value")),
            observed_at=_recent_item_time(item) or fetched_at,
            unit=unit,
        )

    logger.debug(f"Lake level: {observations['level'].value} ft")
    return SourceBundle(
        source=LAKE_LEVEL,
        observations=observations,
        last_updated=fetched_at,
    )


def operations_day_window(config: HubConfig, now: datetime) -> Dict[str, datetime]:
    """The dam operations day containing ``now``'s calendar date: 6am to 6am local."""
    local = now.astimezone(ZoneInfo(config.local_timezone))
    begin = local.replace(
        hour=config.operations_day_start_hour, minute=0, second=0, microsecond=0
    )
    return {"begin": begin, "end": begin + timedelta(days=1)}


def latest_value(values: List[Any]) -> Optional[Dict[str, Any]]:
    """
    Return the last non-null ``[time, value, ...]`` row of a CWMS value series.

    Returns:
        ``{"value": float, "observed_at": datetime | None}`` or None
    """
    rows = [
        row[:2]
        for row in values
        if isinstance(row, (list, tuple)) and len(row) >= 2
    ]
    if not rows:
        return None

    frame = pd.DataFrame(rows, columns=["date_time", "value"])
    frame["value"] = pd.to_numeric(frame["value"], errors="coerce")
    frame = frame.dropna(subset=["value"])
    if frame.empty:
        return None

    last = frame.iloc[-1]
    raw_time = last["date_time"]
    try:
        if isinstance(raw_time, str):
            stamp = pd.to_datetime(raw_time, utc=True)
        else:
            stamp = pd.to_datetime(int(raw_time), unit="ms", utc=True)
        observed_at: Optional[datetime] = stamp.to_pydatetime()
    except (TypeError, ValueError):
        observed_at = None

    return {"value": float(last["value"]), "observed_at": observed_at}


async def fetch_outflow(
    client: UpstreamClient,
    config: HubConfig,
    timeout: float = OUTFLOW_TIMEOUT,
    now: Optional[datetime] = None,
) -> SourceBundle:
    """
    Fetch today's projected 6am discharge (the planned release for the day).

    Raises:
        UpstreamError: On timeout, HTTP failure, or a series with no values
    """
    fetched_at = now or utcnow()
    window = operations_day_window(config, fetched_at)
    params = {
        "office": config.office,
        "name": config.daily_outflow_ts_id,
        "begin": isoformat(window["begin"]),
        "end": isoformat(window["end"]),
        "unit": config.unit_system,
        "format": "json",
    }

    data = await client.get_json(
        f"{config.cwms_base_url}/timeseries",
        params=params,
        timeout=timeout,
        source=OUTFLOW,
    )
    values = data.get("values") if isinstance(data, dict) else None
    if not isinstance(values, list):
        raise UpstreamMalformedResponse("Response has no 'values'", source=OUTFLOW)

    latest = latest_value(values)
    if latest is None:
        raise UpstreamMalformedResponse("No valid outflow data found", source=OUTFLOW)

    logger.info(f"Fetched outflow: {latest['value']} cfs")
    return SourceBundle(
        source=OUTFLOW,
        observations={
            "outflow": Observation(
                value=latest["value"],
                observed_at=latest["observed_at"] or fetched_at,
                unit="cfs",
            )
        },
        last_updated=fetched_at,
        note=PROJECTED_OUTFLOW_NOTE,
    )

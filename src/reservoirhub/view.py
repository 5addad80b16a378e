"""
View model handed to the presentation layer.

Every field is either defined or explicitly marked unavailable: a missing
observation is rendered as "unavailable", never as zero.
"""

from typing import Any, Callable, Dict, Optional

from .models import PAYLOAD_FIELDS, SourceBundle
from .revalidation import RevalidationController
from .trends import ObservationHistory

UNAVAILABLE = "unavailable"
COULD_NOT_LOAD = "could not load"

# quantities shown with a 24h trend arrow
TREND_QUANTITIES = {"level", "outflow", "inflow"}

_DECIMALS = {"ft": 2, "cfs": 0, "degF": 0, "in": 2}


def format_value(value: Any, unit: Optional[str]) -> str:
    if value is None:
        return UNAVAILABLE
    if isinstance(value, str):
        return value or UNAVAILABLE
    decimals = _DECIMALS.get(unit or "", 1)
    text = f"{value:,.{decimals}f}"
    return f"{text} {unit}" if unit else text


def _values(
    bundle: SourceBundle,
    history: Optional[ObservationHistory],
    threshold: float,
) -> Dict[str, Dict[str, Any]]:
    values: Dict[str, Dict[str, Any]] = {}
    for quantity, key, unit in PAYLOAD_FIELDS[bundle.source]:
        observation = bundle.observations.get(quantity)
        value = observation.value if observation is not None else None
        item: Dict[str, Any] = {
            "value": value,
            "display": format_value(value, unit),
            "available": value is not None,
            "unit": unit,
        }
        if observation is not None and observation.note:
            item["note"] = observation.note
        if history is not None and quantity in TREND_QUANTITIES and observation:
            trend = history.trend(f"{bundle.source}.{quantity}", observation, threshold)
            item["trend"] = (
                {"delta": trend.delta, "direction": trend.direction} if trend else None
            )
        values[key] = item
    return values


def build_view_model(
    controller: RevalidationController,
    history: Optional[ObservationHistory] = None,
    trend_threshold: float = 0.0,
) -> Dict[str, Dict[str, Any]]:
    """
    Build the per-source view model from the controller's current state.

    ``message`` is only set when a source has no data at all and its fetch
    failed; stale or estimated data always wins over an error message.
    """
    now = controller.clock.now()
    view: Dict[str, Dict[str, Any]] = {}
    for key in controller.context.keys():
        state = controller.get_state(key)
        entry = controller.context.entry(key)
        bundle = state.data

        stale_seconds = None
        if entry.last_fetched_at is not None:
            stale_seconds = max(0.0, now - entry.last_fetched_at)

        item: Dict[str, Any] = {
            "isLoading": state.is_loading,
            "isValidating": state.is_validating,
            "error": state.error.value if state.error else None,
            "staleSeconds": stale_seconds,
            "message": None,
        }
        if bundle is None:
            item["values"] = None
            if state.error is not None:
                item["message"] = COULD_NOT_LOAD
        else:
            item["values"] = _values(bundle, history, trend_threshold)
            item["degraded"] = bundle.degraded
            item["note"] = bundle.note
            item["lastUpdated"] = bundle.to_payload()["lastUpdated"]
            if bundle.forecast:
                item["forecast"] = [
                    {
                        **p.to_payload(),
                        "shortForecast": format_value(p.short_forecast, None),
                    }
                    for p in bundle.forecast
                ]
        view[key] = item
    return view


def attach_history(
    controller: RevalidationController, history: ObservationHistory
) -> Callable[[], None]:
    """Record every settled, non-degraded bundle into ``history``."""

    def on_change(key: str, state: Any) -> None:
        if state.data is not None and not state.is_validating:
            history.record_bundle(state.data, prefix=key)

    return controller.subscribe(on_change)

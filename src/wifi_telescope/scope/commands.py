"""Endpoint paths and payload builders for the telescope controller API.

Field names and numeric types are the controller's wire contract: integers
stay integers and floats stay floats after JSON encoding.
"""

from __future__ import annotations

from typing import Any

TAKE_CONTROL = "/v1/app/takeControl"
GO_ABSOLUTE = "/v1/motors/goAbsolute"
START_OBSERVATION = "/v1/general/startObservation"
STOP_OBSERVATION = "/v1/general/stopObservation"
PARK = "/v1/general/park"
ADJUST_FOCUS = "/v1/general/adjustObservationFocus"
OPEN_FOR_MAINTENANCE = "/v1/general/openForMaintenance"
START_AUTO_INIT = "/v1/general/startAutoInit"

HISTOGRAM_LOW = -0.75
HISTOGRAM_MEDIUM = 5
HISTOGRAM_HIGH = 0
BACKGROUND_POLYORDER = 4


def object_identifier(name: str) -> str:
    """Collapse whitespace runs and join words with underscores."""
    return " ".join((name or "").split()).replace(" ", "_")


def exposure_to_microseconds(exposure_seconds: float) -> int:
    return int(round(exposure_seconds * 1_000_000))


def gain_to_units(gain: float) -> int:
    return int(round(gain * 10))


def goto_payload(altitude: float, azimuth: float) -> dict[str, Any]:
    return {
        "ALT": float(altitude),
        "AZ": float(azimuth),
    }


def observation_payload(
    ra_degrees: float,
    dec_degrees: float,
    name: str,
    *,
    exposure_seconds: float,
    gain: float,
) -> dict[str, Any]:
    return {
        "ra": float(ra_degrees),
        "de": float(dec_degrees),
        "isJ2000": True,
        "rot": 0,
        "objectId": object_identifier(name),
        "objectName": name,
        "gain": gain_to_units(gain),
        "exposureMicroSec": exposure_to_microseconds(exposure_seconds),
        "doStacking": True,
        "histogramEnabled": True,
        "histogramLow": HISTOGRAM_LOW,
        "histogramMedium": HISTOGRAM_MEDIUM,
        "histogramHigh": HISTOGRAM_HIGH,
        "backgroundEnabled": True,
        "backgroundPolyorder": BACKGROUND_POLYORDER,
    }


def auto_init_payload(latitude: float, longitude: float, timestamp_ms: int) -> dict[str, Any]:
    return {
        "latitude": float(latitude),
        "longitude": float(longitude),
        "time": int(timestamp_ms),
    }

"""Affine GPS <-> floor-plan percent mapping and great-circle distance.

The floor plan is a 0-100 percent space with the origin at the north-west
corner: ``x`` grows eastwards (longitude), ``y`` grows southwards
(decreasing latitude). Inputs outside the facility are clamped, never
rejected.
"""

from __future__ import annotations

import math
from typing import Any

from pyfabrix._constants import EARTH_RADIUS_M
from pyfabrix.ingestion.normalize import safe_float
from pyfabrix.models.room import GpsBounds, GpsPoint, PercentPoint

FACILITY_BOUNDS = GpsBounds(north=37.4221, south=37.4215, west=-122.0851, east=-122.0823)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def percent_to_gps(x_pct: Any, y_pct: Any, bounds: GpsBounds = FACILITY_BOUNDS) -> GpsPoint:
    """Map floor-plan percent coordinates to GPS; missing values map to the center line."""
    x = safe_float(x_pct)
    y = safe_float(y_pct)
    x = _clamp(50.0 if x is None else x, 0.0, 100.0)
    y = _clamp(50.0 if y is None else y, 0.0, 100.0)
    lat = bounds.north - (y / 100.0) * (bounds.north - bounds.south)
    lng = bounds.west + (x / 100.0) * (bounds.east - bounds.west)
    return GpsPoint(lat=lat, lng=lng)


def gps_to_percent(lat: Any, lng: Any, bounds: GpsBounds = FACILITY_BOUNDS) -> PercentPoint:
    """Inverse of :func:`percent_to_gps`."""
    center = bounds.center
    lat_value = safe_float(lat)
    lng_value = safe_float(lng)
    lat_value = _clamp(center.lat if lat_value is None else lat_value, bounds.south, bounds.north)
    lng_value = _clamp(center.lng if lng_value is None else lng_value, bounds.west, bounds.east)
    x = (lng_value - bounds.west) / (bounds.east - bounds.west) * 100.0
    y = (bounds.north - lat_value) / (bounds.north - bounds.south) * 100.0
    return PercentPoint(x_pct=x, y_pct=y)


def haversine_distance(lat1: Any, lng1: Any, lat2: Any, lng2: Any) -> float:
    """Great-circle distance in meters.

    Returns NaN when any coordinate is missing or non-numeric.
    """
    coords = [safe_float(value) for value in (lat1, lng1, lat2, lng2)]
    if any(value is None for value in coords):
        return math.nan
    a_lat, a_lng, b_lat, b_lng = (math.radians(value) for value in coords)  # type: ignore[arg-type]
    d_lat = b_lat - a_lat
    d_lng = b_lng - a_lng
    h = math.sin(d_lat / 2) ** 2 + math.cos(a_lat) * math.cos(b_lat) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))

"""Static room registry and geofence lookups."""

from __future__ import annotations

import re
from typing import Any

from pyfabrix.ingestion.normalize import safe_float
from pyfabrix.models.room import GpsBounds, Room
from pyfabrix.spatial.geometry import percent_to_gps

# (id, name, x%, y%, width%, height%) in floor-plan order; rectangles are disjoint.
ROOM_LAYOUT: tuple[tuple[str, str, float, float, float, float], ...] = (
    ("cleanroom-a", "Cleanroom A", 5, 5, 35, 40),
    ("cleanroom-b", "Cleanroom B", 45, 5, 30, 40),
    ("loading-bay", "Loading Bay", 5, 55, 25, 35),
    ("storage", "Storage", 35, 55, 25, 35),
    ("maintenance", "Maintenance", 65, 55, 25, 25),
)

_NAME_NOISE = re.compile(r"[\s\-_]+")


def _build_room(room_id: str, name: str, x: float, y: float, width: float, height: float) -> Room:
    north_west = percent_to_gps(x, y)
    south_east = percent_to_gps(x + width, y + height)
    bounds = GpsBounds(
        north=north_west.lat,
        south=south_east.lat,
        west=north_west.lng,
        east=south_east.lng,
    )
    return Room(
        id=room_id,
        name=name,
        x_pct=x,
        y_pct=y,
        width_pct=width,
        height_pct=height,
        bounds=bounds,
        center=bounds.center,
    )


ROOMS: tuple[Room, ...] = tuple(_build_room(*entry) for entry in ROOM_LAYOUT)


def normalize_room_name(name: str) -> str:
    """Case, whitespace and hyphen insensitive key."""
    return _NAME_NOISE.sub("", name).lower()


def resolve_room(name: Any) -> Room | None:
    """Look up a room by name or id.

    Exact match first, then substring match in registry order.
    """
    if not isinstance(name, str):
        return None
    key = normalize_room_name(name)
    if not key:
        return None

    for room in ROOMS:
        if key in (normalize_room_name(room.name), normalize_room_name(room.id)):
            return room
    for room in ROOMS:
        candidate = normalize_room_name(room.name)
        if key in candidate or candidate in key:
            return room
    return None


def is_inside_room(lat: Any, lng: Any, room_name: Any) -> bool:
    """True iff the point lies within the room's closed GPS rectangle."""
    room = resolve_room(room_name)
    lat_value = safe_float(lat)
    lng_value = safe_float(lng)
    if room is None or lat_value is None or lng_value is None:
        return False
    return room.bounds.contains(lat_value, lng_value)


def room_at(lat: Any, lng: Any) -> Room | None:
    """Return the room containing the point, if any."""
    lat_value = safe_float(lat)
    lng_value = safe_float(lng)
    if lat_value is None or lng_value is None:
        return None
    for room in ROOMS:
        if room.bounds.contains(lat_value, lng_value):
            return room
    return None

"""Phase-aware task progress.

Progress is a pure function of the task (phase, waypoints, origin) and the
robot's current position. Each phase owns a band of the 0-100 scale so
progress can only move forward as the task advances:

=========================  ==========
Phase                      Progress
=========================  ==========
ASSIGNED                   0
EN_ROUTE_TO_SOURCE         1-43, 44 once inside the source room
PICKING_UP                 47
EN_ROUTE_TO_DESTINATION    50-87, 88 once inside the destination room
DELIVERING                 95
COMPLETED                  100
FAILED                     last progress
=========================  ==========
"""

from __future__ import annotations

import itertools
import math
from datetime import UTC, datetime
from typing import Any

from pyfabrix._constants import FALLBACK_LEG_DISTANCE_M, MIN_LEG_DISTANCE_M, WAYPOINT_RADIUS_M
from pyfabrix.ingestion.normalize import safe_float
from pyfabrix.models.room import GpsPoint
from pyfabrix.models.task import Task, TaskPhase
from pyfabrix.spatial.geometry import haversine_distance
from pyfabrix.spatial.rooms import resolve_room

SOURCE_LEG_FLOOR = 1
SOURCE_LEG_CEILING = 43
SOURCE_LEG_SPAN = 44
SOURCE_ARRIVAL = 44
PICKING_UP = 47
DESTINATION_LEG_FLOOR = 50
DESTINATION_LEG_CEILING = 87
DESTINATION_LEG_SPAN = 40
DESTINATION_ARRIVAL = 88
DELIVERING = 95
COMPLETED = 100

_task_counter = itertools.count(1)


def generate_task_id(now: datetime | None = None) -> str:
    """Return a unique, time-prefixed task id (``TASK-<ms>-<seq>``)."""
    moment = now or datetime.now(UTC)
    return f"TASK-{int(moment.timestamp() * 1000)}-{next(_task_counter):04d}"


def _point(lat: Any, lng: Any) -> GpsPoint | None:
    lat_value = safe_float(lat)
    lng_value = safe_float(lng)
    if lat_value is None or lng_value is None:
        return None
    return GpsPoint(lat=lat_value, lng=lng_value)


def resolve_endpoint(name: str | None, lat: Any, lng: Any) -> GpsPoint | None:
    """Explicit coordinates win; otherwise the center of the named room."""
    explicit = _point(lat, lng)
    if explicit is not None:
        return explicit
    room = resolve_room(name)
    return room.center if room is not None else None


def task_source(task: Task) -> GpsPoint | None:
    return resolve_endpoint(task.source_name, task.source_lat, task.source_lng)


def task_destination(task: Task) -> GpsPoint | None:
    return resolve_endpoint(task.destination_name, task.destination_lat, task.destination_lng)


def task_origin(task: Task) -> GpsPoint | None:
    return _point(task.origin_lat, task.origin_lng)


def at_waypoint(lat: Any, lng: Any, room_name: str | None, point: GpsPoint | None) -> bool:
    """Whether the position counts as "arrived" at a waypoint.

    A resolvable room is a rectangular geofence; an explicit point without a
    room uses a small radius around it.
    """
    here = _point(lat, lng)
    if here is None:
        return False
    room = resolve_room(room_name)
    if room is not None:
        return room.bounds.contains(here.lat, here.lng)
    if point is None:
        return False
    return haversine_distance(here.lat, here.lng, point.lat, point.lng) <= WAYPOINT_RADIUS_M


def leg_fraction(start: GpsPoint | None, target: GpsPoint, here: GpsPoint) -> float:
    """Share of a leg already covered, in ``[0, 1]``."""
    total = math.nan
    if start is not None:
        total = haversine_distance(start.lat, start.lng, target.lat, target.lng)
    if not math.isfinite(total) or total < MIN_LEG_DISTANCE_M:
        total = FALLBACK_LEG_DISTANCE_M
    remaining = haversine_distance(here.lat, here.lng, target.lat, target.lng)
    return max(0.0, min(1.0, 1.0 - remaining / total))


def _band(fraction: float, base: int, span: int, floor: int, ceiling: int) -> int:
    return max(floor, min(ceiling, base + round(fraction * span)))


def compute_phase_progress(task: Task, lat: Any, lng: Any) -> int:
    """Progress (0-100) for ``task`` with the robot at ``(lat, lng)``.

    Missing coordinates degrade to the floor of the current leg's band.
    """
    phase = task.phase
    if phase is TaskPhase.ASSIGNED:
        return 0
    if phase is TaskPhase.PICKING_UP:
        return PICKING_UP
    if phase is TaskPhase.DELIVERING:
        return DELIVERING
    if phase is TaskPhase.COMPLETED:
        return COMPLETED
    if phase is TaskPhase.FAILED:
        return task.progress

    here = _point(lat, lng)
    if phase is TaskPhase.EN_ROUTE_TO_SOURCE:
        source = task_source(task)
        if here is None or source is None:
            return SOURCE_LEG_FLOOR
        if at_waypoint(here.lat, here.lng, task.source_name, source):
            return SOURCE_ARRIVAL
        fraction = leg_fraction(task_origin(task), source, here)
        return _band(fraction, 0, SOURCE_LEG_SPAN, SOURCE_LEG_FLOOR, SOURCE_LEG_CEILING)

    destination = task_destination(task)
    if here is None or destination is None:
        return DESTINATION_LEG_FLOOR
    if at_waypoint(here.lat, here.lng, task.destination_name, destination):
        return DESTINATION_ARRIVAL
    fraction = leg_fraction(task_source(task), destination, here)
    return _band(
        fraction,
        DESTINATION_LEG_FLOOR,
        DESTINATION_LEG_SPAN,
        DESTINATION_LEG_FLOOR,
        DESTINATION_LEG_CEILING,
    )

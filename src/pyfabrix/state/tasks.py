"""Delivery task lifecycle.

A task walks through :data:`~pyfabrix.models.task.PHASE_ORDER`. Phases advance
on geofence entry/exit, with elapsed-time fallbacks for robots that never
report leaving a room:

* ``ASSIGNED`` -> ``EN_ROUTE_TO_SOURCE`` once the robot moves away from its
  assignment position, or after ``start_after``;
* entering the source room pins progress at 44; the next evaluation moves
  to ``PICKING_UP``;
* ``PICKING_UP`` -> ``EN_ROUTE_TO_DESTINATION`` on leaving the source room,
  or after ``pickup_dwell``;
* entering the destination room pins progress at 88; the next evaluation
  moves to ``DELIVERING``;
* ``DELIVERING`` -> ``COMPLETED`` on leaving the destination room, or after
  ``delivery_dwell``.

Each evaluation performs at most one transition. Producers may set the
phase explicitly; such overrides are accepted unless they move an existing
task backwards.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from pyfabrix.config import FabrixConfig
from pyfabrix.ingestion.normalize import safe_float, safe_str
from pyfabrix.models.robot import RobotLocation
from pyfabrix.models.task import PHASE_ORDER, Task, TaskPhase
from pyfabrix.spatial.geometry import haversine_distance
from pyfabrix.spatial.progress import (
    DESTINATION_ARRIVAL,
    SOURCE_ARRIVAL,
    at_waypoint,
    compute_phase_progress,
    generate_task_id,
    task_destination,
    task_source,
)
from pyfabrix.state.policy import merge_progress

_logger = logging.getLogger(__name__)

_DESCRIPTIVE_FIELDS = ("task_type", "priority", "source_name", "destination_name")
_COORDINATE_FIELDS = ("source_lat", "source_lng", "destination_lat", "destination_lng")


@dataclasses.dataclass(frozen=True)
class TaskTimings:
    """Elapsed-time fallbacks for phase transitions."""

    start_after: timedelta = timedelta(seconds=2)
    pickup_dwell: timedelta = timedelta(seconds=10)
    delivery_dwell: timedelta = timedelta(seconds=10)
    departure_radius_m: float = 1.0

    @classmethod
    def from_config(cls, config: FabrixConfig) -> TaskTimings:
        return cls(
            start_after=timedelta(seconds=config.task_start_after),
            pickup_dwell=timedelta(seconds=config.pickup_dwell),
            delivery_dwell=timedelta(seconds=config.delivery_dwell),
        )


def _fields_from_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name in _DESCRIPTIVE_FIELDS:
        value = safe_str(patch.get(name))
        if value is not None:
            fields[name] = value
    for name in _COORDINATE_FIELDS:
        value = safe_float(patch.get(name))
        if value is not None:
            fields[name] = value
    return fields


def _position(location: RobotLocation | None) -> tuple[float | None, float | None]:
    if location is None or not location.has_fix:
        return None, None
    return location.lat, location.lng


def is_regression(current: TaskPhase, incoming: TaskPhase) -> bool:
    """Whether ``incoming`` would move a task backwards."""
    if current.is_terminal:
        return True
    if incoming is TaskPhase.FAILED:
        return False
    return PHASE_ORDER.index(incoming) < PHASE_ORDER.index(current)


def enter_phase(task: Task, phase: TaskPhase, now: datetime) -> Task:
    _logger.debug("Task %s: %s -> %s", task.id, task.phase, phase)
    return task.model_copy(update={"phase": phase, "phase_entered_at": now, "updated_at": now})


def new_task(
    patch: Mapping[str, Any],
    *,
    now: datetime,
    location: RobotLocation | None = None,
) -> Task:
    """Create a task from a normalized assignment patch.

    The robot position at assignment anchors the first leg.
    """
    lat, lng = _position(location)
    task = Task(
        id=safe_str(patch.get("task_id")) or generate_task_id(now),
        phase=TaskPhase.parse(patch.get("phase")) or TaskPhase.ASSIGNED,
        origin_lat=lat,
        origin_lng=lng,
        assigned_at=now,
        phase_entered_at=now,
        updated_at=now,
        **_fields_from_patch(patch),
    )
    return refresh_progress(task, location, now)


def merge_task_update(
    current: Task | None,
    patch: Mapping[str, Any],
    *,
    now: datetime,
    location: RobotLocation | None = None,
) -> Task:
    """Fold a task payload into the robot's current task.

    A different ``task_id`` (or any payload after a finished task that
    carries no id) starts a new task. Otherwise fields are merged and an
    explicit phase overrides the state machine.
    """
    task_id = safe_str(patch.get("task_id"))
    if current is None or (task_id is not None and task_id != current.id):
        return new_task(patch, now=now, location=location)
    if current.phase.is_terminal and task_id is None:
        return new_task(patch, now=now, location=location)

    updates = _fields_from_patch(patch)
    task = current.model_copy(update={**updates, "updated_at": now}) if updates else current

    phase = TaskPhase.parse(patch.get("phase"))
    if phase is not None and phase is not task.phase:
        if is_regression(task.phase, phase):
            _logger.debug("Ignoring phase %s for task %s in %s", phase, task.id, task.phase)
        else:
            task = enter_phase(task, phase, now)
    return refresh_progress(task, location, now, same_phase=task.phase is current.phase)


def advance_task(task: Task, location: RobotLocation | None, now: datetime, timings: TaskTimings) -> Task:
    """Apply at most one automatic phase transition."""
    if task.phase.is_terminal:
        return task
    lat, lng = _position(location)
    here_known = lat is not None and lng is not None
    elapsed = now - task.phase_entered_at

    if task.phase is TaskPhase.ASSIGNED:
        if here_known and (task.origin_lat is None or task.origin_lng is None):
            return task.model_copy(update={"origin_lat": lat, "origin_lng": lng, "updated_at": now})
        moved = here_known and haversine_distance(task.origin_lat, task.origin_lng, lat, lng) > timings.departure_radius_m
        if moved or elapsed >= timings.start_after:
            return enter_phase(task, TaskPhase.EN_ROUTE_TO_SOURCE, now)
        return task

    if task.phase is TaskPhase.EN_ROUTE_TO_SOURCE:
        if task.source_reached_at is not None:
            return enter_phase(task, TaskPhase.PICKING_UP, now)
        return task

    if task.phase is TaskPhase.PICKING_UP:
        source = task_source(task)
        left = here_known and source is not None and not at_waypoint(lat, lng, task.source_name, source)
        if left or elapsed >= timings.pickup_dwell:
            return enter_phase(task, TaskPhase.EN_ROUTE_TO_DESTINATION, now)
        return task

    if task.phase is TaskPhase.EN_ROUTE_TO_DESTINATION:
        if task.destination_reached_at is not None:
            return enter_phase(task, TaskPhase.DELIVERING, now)
        return task

    destination = task_destination(task)
    left = here_known and destination is not None and not at_waypoint(lat, lng, task.destination_name, destination)
    if left or elapsed >= timings.delivery_dwell:
        return enter_phase(task, TaskPhase.COMPLETED, now)
    return task


def refresh_progress(
    task: Task,
    location: RobotLocation | None,
    now: datetime,
    *,
    same_phase: bool = True,
) -> Task:
    """Recompute progress and stamp waypoint arrival."""
    if task.phase is TaskPhase.FAILED:
        return task
    lat, lng = _position(location)
    computed = compute_phase_progress(task, lat, lng)
    updates: dict[str, Any] = {}

    progress = merge_progress(task.progress, computed, same_phase=same_phase)
    if progress != task.progress:
        updates["progress"] = progress
    if task.phase is TaskPhase.EN_ROUTE_TO_SOURCE and computed == SOURCE_ARRIVAL and task.source_reached_at is None:
        updates["source_reached_at"] = now
    if (
        task.phase is TaskPhase.EN_ROUTE_TO_DESTINATION
        and computed == DESTINATION_ARRIVAL
        and task.destination_reached_at is None
    ):
        updates["destination_reached_at"] = now

    if not updates:
        return task
    return task.model_copy(update={**updates, "updated_at": now})


def evaluate_task(task: Task, location: RobotLocation | None, now: datetime, timings: TaskTimings) -> Task:
    """One state-machine step followed by a progress refresh."""
    advanced = advance_task(task, location, now, timings)
    return refresh_progress(advanced, location, now, same_phase=advanced.phase is task.phase)

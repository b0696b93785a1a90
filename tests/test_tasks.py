from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pyfabrix.models.robot import RobotLocation
from pyfabrix.models.task import TaskPhase
from pyfabrix.spatial import percent_to_gps, resolve_room
from pyfabrix.state.tasks import (
    TaskTimings,
    advance_task,
    evaluate_task,
    is_regression,
    merge_task_update,
    new_task,
)

T0 = datetime(2026, 1, 1, 8, 0, tzinfo=UTC)
TIMINGS = TaskTimings()


def _at(name: str) -> RobotLocation:
    room = resolve_room(name)
    assert room is not None
    return RobotLocation(lat=room.center.lat, lng=room.center.lng)


def _assignment(**extra: object) -> dict[str, object]:
    return {"task_id": "TASK-1", "source_name": "Cleanroom A", "destination_name": "Storage", **extra}


def test_task_phase_parse_aliases() -> None:
    assert TaskPhase.parse("en-route to source") is TaskPhase.EN_ROUTE_TO_SOURCE
    assert TaskPhase.parse("Pending") is TaskPhase.ASSIGNED
    assert TaskPhase.parse("In Progress") is TaskPhase.EN_ROUTE_TO_SOURCE
    assert TaskPhase.parse("cancelled") is TaskPhase.FAILED
    assert TaskPhase.parse("teleporting") is None
    assert TaskPhase.parse(3) is None


def test_new_task_anchors_origin_at_robot_position() -> None:
    location = _at("Loading Bay")
    task = new_task(_assignment(), now=T0, location=location)

    assert task.id == "TASK-1"
    assert task.phase is TaskPhase.ASSIGNED
    assert (task.origin_lat, task.origin_lng) == (location.lat, location.lng)
    assert task.progress == 0


def test_new_task_without_id_gets_generated_id() -> None:
    task = new_task({"source_name": "Cleanroom A"}, now=T0)
    assert task.id.startswith("TASK-")


def test_assigned_advances_after_start_delay_without_movement() -> None:
    location = _at("Loading Bay")
    task = new_task(_assignment(), now=T0, location=location)

    assert advance_task(task, location, T0 + timedelta(seconds=1), TIMINGS).phase is TaskPhase.ASSIGNED
    later = advance_task(task, location, T0 + TIMINGS.start_after, TIMINGS)
    assert later.phase is TaskPhase.EN_ROUTE_TO_SOURCE


def test_assigned_without_origin_records_first_fix() -> None:
    task = new_task(_assignment(), now=T0)
    location = _at("Loading Bay")

    updated = advance_task(task, location, T0, TIMINGS)

    assert updated.phase is TaskPhase.ASSIGNED
    assert updated.origin_lat == location.lat


def test_picking_up_advances_after_dwell_even_inside_room() -> None:
    inside = _at("Cleanroom A")
    task = new_task(_assignment(phase="PICKING_UP"), now=T0, location=inside)

    assert evaluate_task(task, inside, T0 + timedelta(seconds=5), TIMINGS).phase is TaskPhase.PICKING_UP
    done = evaluate_task(task, inside, T0 + TIMINGS.pickup_dwell, TIMINGS)
    assert done.phase is TaskPhase.EN_ROUTE_TO_DESTINATION
    assert done.progress >= 50


def test_delivering_completes_on_exit() -> None:
    inside = _at("Storage")
    task = new_task(_assignment(phase="DELIVERING"), now=T0, location=inside)
    outside = percent_to_gps(50, 50)

    done = evaluate_task(task, RobotLocation(lat=outside.lat, lng=outside.lng), T0, TIMINGS)

    assert done.phase is TaskPhase.COMPLETED
    assert done.progress == 100


def test_is_regression() -> None:
    assert is_regression(TaskPhase.PICKING_UP, TaskPhase.EN_ROUTE_TO_SOURCE)
    assert not is_regression(TaskPhase.PICKING_UP, TaskPhase.DELIVERING)
    assert not is_regression(TaskPhase.PICKING_UP, TaskPhase.FAILED)
    assert is_regression(TaskPhase.COMPLETED, TaskPhase.DELIVERING)
    assert is_regression(TaskPhase.FAILED, TaskPhase.ASSIGNED)


def test_explicit_phase_overrides_state_machine_but_not_backwards() -> None:
    location = _at("Loading Bay")
    task = new_task(_assignment(), now=T0, location=location)

    forward = merge_task_update(task, {"task_id": "TASK-1", "phase": "DELIVERING"}, now=T0, location=location)
    assert forward.phase is TaskPhase.DELIVERING
    assert forward.progress == 95

    backwards = merge_task_update(forward, {"task_id": "TASK-1", "phase": "ASSIGNED"}, now=T0, location=location)
    assert backwards.phase is TaskPhase.DELIVERING


def test_failed_phase_freezes_progress() -> None:
    location = _at("Loading Bay")
    task = new_task(_assignment(phase="DELIVERING"), now=T0, location=location)

    failed = merge_task_update(task, {"task_id": "TASK-1", "phase": "FAILED"}, now=T0)

    assert failed.phase is TaskPhase.FAILED
    assert failed.progress == 95


def test_new_task_id_replaces_current_task() -> None:
    location = _at("Loading Bay")
    task = new_task(_assignment(phase="DELIVERING"), now=T0, location=location)

    replaced = merge_task_update(task, _assignment(task_id="TASK-2"), now=T0, location=location)

    assert replaced.id == "TASK-2"
    assert replaced.phase is TaskPhase.ASSIGNED
    assert replaced.progress == 0


def test_payload_without_id_after_completion_starts_new_task() -> None:
    location = _at("Loading Bay")
    finished = new_task(_assignment(phase="COMPLETED"), now=T0, location=location)

    fresh = merge_task_update(finished, {"source_name": "Cleanroom B", "destination_name": "Storage"}, now=T0)

    assert fresh.id != finished.id
    assert fresh.phase is TaskPhase.ASSIGNED
    assert fresh.source_name == "Cleanroom B"


def test_terminal_task_ignores_phase_changes() -> None:
    finished = new_task(_assignment(phase="COMPLETED"), now=T0)
    same = merge_task_update(finished, {"task_id": "TASK-1", "phase": "DELIVERING"}, now=T0)
    assert same.phase is TaskPhase.COMPLETED

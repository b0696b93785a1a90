"""Delivery task model and phase enum."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pyfabrix.models._base import FabrixRecord


class TaskPhase(StrEnum):
    ASSIGNED = "ASSIGNED"
    EN_ROUTE_TO_SOURCE = "EN_ROUTE_TO_SOURCE"
    PICKING_UP = "PICKING_UP"
    EN_ROUTE_TO_DESTINATION = "EN_ROUTE_TO_DESTINATION"
    DELIVERING = "DELIVERING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskPhase.COMPLETED, TaskPhase.FAILED)

    @classmethod
    def parse(cls, value: object) -> TaskPhase | None:
        """Map a producer phase/status string onto a phase.

        Accepts member names in any case with spaces or hyphens, plus the
        legacy task statuses (``Pending``, ``In Progress``, ``Cancelled``).
        Unknown values yield ``None``.
        """
        if not isinstance(value, str):
            return None
        key = value.strip().upper().replace("-", "_").replace(" ", "_")
        if not key:
            return None
        if key in cls.__members__:
            return cls[key]
        return _STATUS_ALIASES.get(key)


_STATUS_ALIASES: dict[str, TaskPhase] = {
    "PENDING": TaskPhase.ASSIGNED,
    "IN_PROGRESS": TaskPhase.EN_ROUTE_TO_SOURCE,
    "PICKUP": TaskPhase.PICKING_UP,
    "DELIVERED": TaskPhase.COMPLETED,
    "DONE": TaskPhase.COMPLETED,
    "CANCELLED": TaskPhase.FAILED,
    "CANCELED": TaskPhase.FAILED,
    "ABORTED": TaskPhase.FAILED,
}

PHASE_ORDER: tuple[TaskPhase, ...] = (
    TaskPhase.ASSIGNED,
    TaskPhase.EN_ROUTE_TO_SOURCE,
    TaskPhase.PICKING_UP,
    TaskPhase.EN_ROUTE_TO_DESTINATION,
    TaskPhase.DELIVERING,
    TaskPhase.COMPLETED,
)


class Task(FabrixRecord):
    """A multi-phase delivery task.

    ``origin_*`` is the robot position at assignment time and anchors the
    first leg. Source/destination coordinates are either explicit or the
    center of the named room.
    """

    id: str
    task_type: str = "DELIVERY"
    priority: str = "NORMAL"
    phase: TaskPhase = TaskPhase.ASSIGNED
    source_name: str | None = None
    destination_name: str | None = None
    source_lat: float | None = None
    source_lng: float | None = None
    destination_lat: float | None = None
    destination_lng: float | None = None
    origin_lat: float | None = None
    origin_lng: float | None = None
    progress: int = 0
    assigned_at: datetime
    phase_entered_at: datetime
    updated_at: datetime
    source_reached_at: datetime | None = None
    destination_reached_at: datetime | None = None

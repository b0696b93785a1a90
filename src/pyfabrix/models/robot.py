"""Canonical per-robot record."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from pyfabrix.models._base import FabrixRecord
from pyfabrix.models.alert import Severity
from pyfabrix.models.task import Task


class RobotLocation(FabrixRecord):
    lat: float | None = None
    lng: float | None = None
    z: float = 0.0

    @property
    def has_fix(self) -> bool:
        return self.lat is not None and self.lng is not None


class RobotEnvironment(FabrixRecord):
    temp: float | None = None
    humidity: float | None = None


class RobotStatus(FabrixRecord):
    battery: float | None = None
    load: str | None = None
    state: str = "UNKNOWN"
    obstacle_detected: bool = False


class RobotState(FabrixRecord):
    """A mobile unit; belongs to exactly one device at a time."""

    id: str
    device_id: str
    location: RobotLocation = Field(default_factory=RobotLocation)
    heading: float = 0.0
    environment: RobotEnvironment = Field(default_factory=RobotEnvironment)
    status: RobotStatus = Field(default_factory=RobotStatus)
    task: Task | None = None
    discovered_at: datetime | None = None
    last_update: datetime | None = None
    severity: Severity = Severity.NORMAL


class RobotHealth(FabrixRecord):
    """Battery-derived health: ``score`` is ``pct / 100``."""

    score: float
    label: str
    pct: float
    status: Severity

"""Pydantic models for pyfabrix records and settings."""

from pyfabrix.models._base import FabrixPayload, FabrixRecord
from pyfabrix.models.alert import Alert, Severity
from pyfabrix.models.device import DeviceControlState, DeviceEnvironment, DeviceState
from pyfabrix.models.robot import RobotEnvironment, RobotHealth, RobotLocation, RobotState, RobotStatus
from pyfabrix.models.room import GpsBounds, GpsPoint, PercentPoint, Room
from pyfabrix.models.settings import (
    SETTINGS_SCHEMA_VERSION,
    BatteryThresholds,
    FabrixSettings,
    MetricThresholds,
    SystemMode,
    Thresholds,
)
from pyfabrix.models.task import PHASE_ORDER, Task, TaskPhase

__all__ = [
    "PHASE_ORDER",
    "SETTINGS_SCHEMA_VERSION",
    "Alert",
    "BatteryThresholds",
    "DeviceControlState",
    "DeviceEnvironment",
    "DeviceState",
    "FabrixPayload",
    "FabrixRecord",
    "FabrixSettings",
    "GpsBounds",
    "GpsPoint",
    "MetricThresholds",
    "PercentPoint",
    "RobotEnvironment",
    "RobotHealth",
    "RobotLocation",
    "RobotState",
    "RobotStatus",
    "Room",
    "Severity",
    "SystemMode",
    "Task",
    "TaskPhase",
    "Thresholds",
]

"""pyfabrix - Async Python client for facility and delivery-robot telemetry."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyfabrix")
except PackageNotFoundError:
    __version__ = "0+local"
from pyfabrix.client import FabrixClient
from pyfabrix.config import DEFAULT_DEVICES, DeviceDescriptor, FabrixConfig
from pyfabrix.exceptions import (
    FabrixCommandError,
    FabrixConfigError,
    FabrixError,
    FabrixParseError,
    FabrixTransportError,
    FabrixValidationError,
)
from pyfabrix.models import (
    Alert,
    DeviceState,
    RobotHealth,
    RobotLocation,
    RobotState,
    Room,
    Severity,
    SystemMode,
    Task,
    TaskPhase,
    Thresholds,
)
from pyfabrix.settings import JsonFileSettingsBackend, MemorySettingsBackend, SettingsRepository
from pyfabrix.state.events import EventKind, EventSource, TelemetryEvent
from pyfabrix.state.store import TelemetryStore
from pyfabrix.thresholds import DEFAULT_THRESHOLDS, ThresholdResolver

__all__ = [
    "__version__",
    "DEFAULT_DEVICES",
    "DEFAULT_THRESHOLDS",
    "Alert",
    "DeviceDescriptor",
    "DeviceState",
    "EventKind",
    "EventSource",
    "FabrixClient",
    "FabrixCommandError",
    "FabrixConfig",
    "FabrixConfigError",
    "FabrixError",
    "FabrixParseError",
    "FabrixTransportError",
    "FabrixValidationError",
    "JsonFileSettingsBackend",
    "MemorySettingsBackend",
    "RobotHealth",
    "RobotLocation",
    "RobotState",
    "Room",
    "SettingsRepository",
    "Severity",
    "SystemMode",
    "Task",
    "TaskPhase",
    "TelemetryEvent",
    "TelemetryStore",
    "ThresholdResolver",
    "Thresholds",
]

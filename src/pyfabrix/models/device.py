"""Canonical per-device record."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from pyfabrix.models._base import FabrixRecord
from pyfabrix.models.alert import Severity


class DeviceEnvironment(FabrixRecord):
    temperature: float | None = None
    humidity: float | None = None
    pressure: float | None = None


class DeviceControlState(FabrixRecord):
    """Actuator and health state reported on ``state/{deviceId}``."""

    ac_power: str | None = None
    air_purifier: str | None = None
    status: str | None = None
    gateway_health: str | None = None
    active_alert: str | None = None
    wifi_rssi: float | None = None
    emergency_stop: bool | None = None


class DeviceState(FabrixRecord):
    """One record per configured device; never destroyed."""

    id: str
    name: str = ""
    zone: str = ""
    environment: DeviceEnvironment = Field(default_factory=DeviceEnvironment)
    state: DeviceControlState = Field(default_factory=DeviceControlState)
    task_summary: dict[str, Any] | None = None
    last_update: datetime | None = None
    severity: Severity = Severity.NORMAL

"""Inbound payload models.

Producers publish the same value under several keys. Each field's
``AliasChoices`` lists the accepted keys in precedence order: the first key
present with a meaningful value wins. Sentinels (``""``, ``"--"``,
``"null"``, NaN) are stripped by :class:`~pyfabrix.models._base.FabrixPayload`
before aliases are resolved, so they never shadow a lower-precedence key.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import AliasChoices, Field, field_validator

from pyfabrix.ingestion.normalize import safe_bool, safe_float, safe_str
from pyfabrix.models._base import FabrixPayload


class EnvironmentPayload(FabrixPayload):
    """Ambient readings on ``stream/{deviceId}``."""

    temperature: float | None = Field(
        default=None, validation_alias=AliasChoices("ambient_temp", "temperature", "temp")
    )
    humidity: float | None = Field(default=None, validation_alias=AliasChoices("ambient_hum", "humidity", "hum"))
    pressure: float | None = Field(
        default=None, validation_alias=AliasChoices("atmospheric_pressure", "pressure")
    )

    @field_validator("temperature", "humidity", "pressure", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)


class AirPurifierPayload(FabrixPayload):
    air_purifier: str | None = Field(
        default=None,
        validation_alias=AliasChoices("air_purifier", "airPurifier", "air_scrubber_status"),
    )

    @field_validator("air_purifier", mode="before")
    @classmethod
    def _coerce_state(cls, value: Any) -> str | None:
        if isinstance(value, bool):
            return "ACTIVE" if value else "INACTIVE"
        text = safe_str(value)
        return text.upper() if text else None


class AcPayload(FabrixPayload):
    ac_power: str | None = Field(default=None, validation_alias=AliasChoices("ac_power", "acPower", "ac"))

    @field_validator("ac_power", mode="before")
    @classmethod
    def _coerce_power(cls, value: Any) -> str | None:
        if isinstance(value, bool):
            return "ON" if value else "OFF"
        text = safe_str(value)
        return text.upper() if text else None


class DeviceStatusPayload(FabrixPayload):
    """General device health on ``state/{deviceId}``."""

    status: str | None = Field(default=None, validation_alias=AliasChoices("status", "system_status"))
    gateway_health: str | None = Field(
        default=None, validation_alias=AliasChoices("gateway_health", "gatewayHealth")
    )
    active_alert: str | None = Field(default=None, validation_alias=AliasChoices("active_alert", "activeAlert"))
    wifi_rssi: float | None = Field(default=None, validation_alias=AliasChoices("wifi_rssi", "rssi"))
    emergency_stop: bool | None = Field(
        default=None, validation_alias=AliasChoices("emergency_stop", "emergencyStop")
    )

    @field_validator("status", "gateway_health", "active_alert", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("wifi_rssi", mode="before")
    @classmethod
    def _coerce_rssi(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("emergency_stop", mode="before")
    @classmethod
    def _coerce_stop(cls, value: Any) -> bool | None:
        return safe_bool(value)


class DiscoveryPayload(FabrixPayload):
    """Robot roster announcement; ``robots`` may be one id or a list of ids."""

    robots: list[str] = Field(default_factory=list, validation_alias=AliasChoices("robots", "robotIds", "robot_ids"))

    @field_validator("robots", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> list[str]:
        items = value if isinstance(value, list | tuple) else [value]
        ids: list[str] = []
        for item in items:
            if isinstance(item, dict):
                item = item.get("id") or item.get("robotId")
            text = safe_str(item)
            if text and text not in ids:
                ids.append(text)
        return ids


class RobotLocationPayload(FabrixPayload):
    flatten_keys: ClassVar[tuple[str, ...]] = ("data", "location", "position")

    lat: float | None = Field(default=None, validation_alias=AliasChoices("lat", "latitude"))
    lng: float | None = Field(default=None, validation_alias=AliasChoices("lng", "longitude", "lon"))
    z: float | None = Field(default=None, validation_alias=AliasChoices("z", "altitude"))
    heading: float | None = Field(default=None, validation_alias=AliasChoices("heading", "direction", "yaw"))

    @field_validator("lat", "lng", "z", "heading", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)


class RobotTemperaturePayload(FabrixPayload):
    flatten_keys: ClassVar[tuple[str, ...]] = ("data", "environment")

    temp: float | None = Field(default=None, validation_alias=AliasChoices("temp", "temperature"))
    humidity: float | None = Field(default=None, validation_alias=AliasChoices("humidity", "hum"))

    @field_validator("temp", "humidity", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)


class RobotStatusPayload(FabrixPayload):
    flatten_keys: ClassVar[tuple[str, ...]] = ("data", "status")

    battery: float | None = Field(
        default=None, validation_alias=AliasChoices("battery", "battery_pct", "batteryLevel")
    )
    load: str | None = Field(default=None, validation_alias=AliasChoices("load", "payload"))
    state: str | None = Field(default=None, validation_alias=AliasChoices("state", "status", "robot-status"))
    obstacle_detected: bool | None = Field(
        default=None, validation_alias=AliasChoices("obstacle_detected", "obstacleDetected")
    )

    @field_validator("battery", mode="before")
    @classmethod
    def _coerce_battery(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("load", mode="before")
    @classmethod
    def _coerce_load(cls, value: Any) -> str | None:
        if isinstance(value, dict | list):
            return None
        return safe_str(value)

    @field_validator("state", mode="before")
    @classmethod
    def _coerce_state(cls, value: Any) -> str | None:
        if isinstance(value, dict | list):
            return None
        text = safe_str(value)
        return text.upper() if text else None

    @field_validator("obstacle_detected", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool | None:
        return safe_bool(value)


class RobotBatteryPayload(FabrixPayload):
    battery: float | None = Field(
        default=None,
        validation_alias=AliasChoices("battery", "battery_pct", "batteryLevel", "level", "value"),
    )

    @field_validator("battery", mode="before")
    @classmethod
    def _coerce_battery(cls, value: Any) -> float | None:
        return safe_float(value)


class RobotTaskPayload(FabrixPayload):
    """Task assignment or progress report for one robot."""

    flatten_keys: ClassVar[tuple[str, ...]] = ("data", "task")

    task_id: str | None = Field(default=None, validation_alias=AliasChoices("task_id", "taskId", "id"))
    task_type: str | None = Field(default=None, validation_alias=AliasChoices("task_type", "type"))
    priority: str | None = None
    phase: str | None = Field(default=None, validation_alias=AliasChoices("phase", "status"))
    source_name: str | None = Field(
        default=None, validation_alias=AliasChoices("initiate location", "source_name", "source")
    )
    destination_name: str | None = Field(
        default=None, validation_alias=AliasChoices("destination", "destination_name")
    )
    source_lat: float | None = Field(default=None, validation_alias=AliasChoices("source_lat", "sourceLat"))
    source_lng: float | None = Field(default=None, validation_alias=AliasChoices("source_lng", "sourceLng"))
    destination_lat: float | None = Field(
        default=None, validation_alias=AliasChoices("destination_lat", "destinationLat")
    )
    destination_lng: float | None = Field(
        default=None, validation_alias=AliasChoices("destination_lng", "destinationLng")
    )

    @field_validator("task_id", "task_type", "priority", "phase", "source_name", "destination_name", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        if isinstance(value, dict | list):
            return None
        return safe_str(value)

    @field_validator("source_lat", "source_lng", "destination_lat", "destination_lng", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

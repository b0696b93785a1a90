"""Persisted operator configuration (versioned)."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

#: Bumped whenever the persisted shape changes; see :func:`pyfabrix.settings.migrate_settings`.
SETTINGS_SCHEMA_VERSION = 1


class MetricThresholds(BaseModel):
    """Range thresholds; ``critical`` is an upper bound (absent for pressure)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    min: float
    max: float
    critical: float | None = None


class BatteryThresholds(BaseModel):
    """Battery percentage levels: at or below ``low`` warns, at or below ``critical`` is critical."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    low: float
    critical: float


class Thresholds(BaseModel):
    """A fully populated threshold set."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    temperature: MetricThresholds
    humidity: MetricThresholds
    pressure: MetricThresholds
    battery: BatteryThresholds
    robot_temp: MetricThresholds


class SystemMode(StrEnum):
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"


class FabrixSettings(BaseModel):
    """The settings document as stored under the settings key."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    schema_version: int = SETTINGS_SCHEMA_VERSION
    thresholds: Thresholds
    system_mode: SystemMode = SystemMode.MANUAL
    robot_settings: dict[str, dict[str, Any]] = Field(default_factory=dict)

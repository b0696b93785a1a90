"""Normalized telemetry events.

All ingestion paths (live streams, history fetches, local commands)
convert their inputs into these events. Only the state/store layer is
allowed to merge them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventSource(StrEnum):
    STREAM = "stream"
    STATE = "state"
    HISTORY = "history"
    SNAPSHOT = "snapshot"
    LOCAL = "local"


class EventKind(StrEnum):
    ENVIRONMENT = "environment"
    AC = "ac"
    STATUS = "status"
    AIR_PURIFIER = "air-purifier"
    TASK_SUMMARY = "task-summary"
    ROBOT_DISCOVERY = "robot-discovery"
    ROBOT_LOCATION = "robot-location"
    ROBOT_TEMPERATURE = "robot-temperature"
    ROBOT_STATUS = "robot-status"
    ROBOT_BATTERY = "robot-battery"
    ROBOT_TASK = "robot-task"
    UNPARSED = "unparsed"

    @property
    def targets_robot(self) -> bool:
        return self in _ROBOT_KINDS


_ROBOT_KINDS = frozenset(
    {
        EventKind.ROBOT_LOCATION,
        EventKind.ROBOT_TEMPERATURE,
        EventKind.ROBOT_STATUS,
        EventKind.ROBOT_BATTERY,
        EventKind.ROBOT_TASK,
    }
)


class TelemetryEvent(BaseModel):
    """A normalized update to apply to the telemetry store."""

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(..., description="Target device id")
    robot_id: str | None = Field(default=None, description="Target robot id for robot-scoped kinds")
    kind: EventKind
    source: EventSource
    topic: str = ""
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload_timestamp: int | None = Field(
        default=None,
        description="Timestamp (epoch milliseconds) from the payload, if any.",
    )
    data: dict[str, Any] = Field(default_factory=dict, description="Normalized patch data")
    raw: dict[str, Any] = Field(default_factory=dict, description="Original payload (as received)")

    @field_validator("device_id")
    @classmethod
    def _normalize_device_id(cls, value: str) -> str:
        device_id = value.strip()
        if not device_id:
            raise ValueError("device_id must be non-empty")
        return device_id

    @field_validator("robot_id")
    @classmethod
    def _normalize_robot_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        robot_id = value.strip()
        return robot_id or None

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

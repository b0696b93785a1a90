"""Alert rules and derived severity.

Rules are level-triggered: every update re-evaluates the values it carries
and the alert log's deduplication window absorbs repeats.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any

from pyfabrix.ingestion.normalize import safe_float
from pyfabrix.models.alert import Severity
from pyfabrix.models.device import DeviceState
from pyfabrix.models.robot import RobotState
from pyfabrix.models.settings import Thresholds
from pyfabrix.models.task import Task
from pyfabrix.thresholds import (
    classify_battery,
    classify_pressure,
    classify_range,
    classify_robot_temp,
)

ERROR_STATE = "ERROR"

# Values of ``active_alert`` that mean "no alert".
_CLEAR_ALERT_TEXT = frozenset({"NONE", "OK", "CLEAR", "NORMAL", "FALSE", "0"})


@dataclasses.dataclass(frozen=True)
class AlertCandidate:
    severity: Severity
    message: str
    metric: str | None = None
    robot_id: str | None = None


def _fmt(value: float) -> str:
    return f"{value:g}"


def is_active_alert(text: str | None) -> bool:
    if not text:
        return False
    return text.strip().upper() not in _CLEAR_ALERT_TEXT


def _range_alerts(metric: str, label: str, unit: str, value: float, thresholds: Thresholds) -> list[AlertCandidate]:
    limits = getattr(thresholds, metric)
    severity = classify_range(value, limits)
    if severity is Severity.NORMAL:
        return []
    if severity is Severity.CRITICAL:
        message = f"CRITICAL: {label} at {_fmt(value)}{unit} exceeds {_fmt(limits.critical)}{unit}"
    elif value > limits.max:
        message = f"High {label.lower()} detected: {_fmt(value)}{unit} (max: {_fmt(limits.max)}{unit})"
    else:
        message = f"Low {label.lower()} detected: {_fmt(value)}{unit} (min: {_fmt(limits.min)}{unit})"
    return [AlertCandidate(severity=severity, message=message, metric=metric)]


def environment_alerts(patch: Mapping[str, Any], thresholds: Thresholds) -> list[AlertCandidate]:
    alerts: list[AlertCandidate] = []
    temperature = safe_float(patch.get("temperature"))
    if temperature is not None:
        alerts.extend(_range_alerts("temperature", "Temperature", "°C", temperature, thresholds))
    humidity = safe_float(patch.get("humidity"))
    if humidity is not None:
        alerts.extend(_range_alerts("humidity", "Humidity", "%", humidity, thresholds))
    pressure = safe_float(patch.get("pressure"))
    if pressure is not None:
        severity = classify_pressure(pressure, thresholds.pressure)
        if severity is not Severity.NORMAL:
            limits = thresholds.pressure
            alerts.append(
                AlertCandidate(
                    severity=severity,
                    message=(
                        f"Abnormal pressure detected: {_fmt(pressure)} hPa "
                        f"(range: {_fmt(limits.min)}-{_fmt(limits.max)} hPa)"
                    ),
                    metric="pressure",
                )
            )
    return alerts


def status_alerts(patch: Mapping[str, Any]) -> list[AlertCandidate]:
    text = patch.get("active_alert")
    if isinstance(text, str) and is_active_alert(text):
        return [AlertCandidate(severity=Severity.CRITICAL, message=text, metric="active_alert")]
    return []


def robot_temperature_alerts(robot_id: str, patch: Mapping[str, Any], thresholds: Thresholds) -> list[AlertCandidate]:
    temp = safe_float(patch.get("temp"))
    if temp is None:
        return []
    limits = thresholds.robot_temp
    severity = classify_robot_temp(temp, limits)
    if severity is Severity.NORMAL:
        return []
    if temp < limits.min:
        message = f"Robot {robot_id} temperature too low: {_fmt(temp)}°C (min: {_fmt(limits.min)}°C)"
    else:
        message = f"Robot {robot_id} overheating: {_fmt(temp)}°C"
    return [AlertCandidate(severity=severity, message=message, metric="robot_temp", robot_id=robot_id)]


def robot_status_alerts(robot_id: str, patch: Mapping[str, Any], thresholds: Thresholds) -> list[AlertCandidate]:
    alerts: list[AlertCandidate] = []
    battery = safe_float(patch.get("battery"))
    if battery is not None:
        severity = classify_battery(battery, thresholds.battery)
        if severity is Severity.CRITICAL:
            alerts.append(
                AlertCandidate(
                    severity=severity,
                    message=f"CRITICAL: Robot {robot_id} battery at {_fmt(battery)}%",
                    metric="battery",
                    robot_id=robot_id,
                )
            )
        elif severity is Severity.WARNING:
            alerts.append(
                AlertCandidate(
                    severity=severity,
                    message=f"Robot {robot_id} low battery: {_fmt(battery)}%",
                    metric="battery",
                    robot_id=robot_id,
                )
            )
    if patch.get("obstacle_detected") is True:
        alerts.append(
            AlertCandidate(
                severity=Severity.CRITICAL,
                message=f"Robot {robot_id} obstacle detected!",
                metric="obstacle",
                robot_id=robot_id,
            )
        )
    return alerts


def task_failed_alert(robot_id: str, task: Task) -> AlertCandidate:
    return AlertCandidate(
        severity=Severity.WARNING,
        message=f"Robot {robot_id} task {task.id} failed",
        metric="task",
        robot_id=robot_id,
    )


def device_severity(device: DeviceState, thresholds: Thresholds) -> Severity:
    env = device.environment
    levels = [
        classify_range(env.temperature, thresholds.temperature),
        classify_range(env.humidity, thresholds.humidity),
        classify_pressure(env.pressure, thresholds.pressure),
    ]
    if is_active_alert(device.state.active_alert):
        levels.append(Severity.CRITICAL)
    return Severity.worst(*levels)


def robot_severity(robot: RobotState, thresholds: Thresholds) -> Severity:
    levels = [
        classify_robot_temp(robot.environment.temp, thresholds.robot_temp),
        classify_battery(robot.status.battery, thresholds.battery),
    ]
    if robot.status.state == ERROR_STATE or robot.status.obstacle_detected:
        levels.append(Severity.CRITICAL)
    return Severity.worst(*levels)

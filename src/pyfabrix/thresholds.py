"""Threshold resolution and severity classification.

Single source of truth for turning a metric value into a
:class:`~pyfabrix.models.alert.Severity`. Classification is a pure function
of ``(value, thresholds)``; :class:`ThresholdResolver` only decides *which*
thresholds apply by reading the current operator configuration.

Missing values always classify as ``normal``. Callers that need to show
"no data" must check for ``None`` themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pyfabrix.ingestion.normalize import safe_float
from pyfabrix.models.alert import Severity
from pyfabrix.models.robot import RobotHealth
from pyfabrix.models.settings import BatteryThresholds, MetricThresholds, Thresholds

_logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = Thresholds(
    temperature=MetricThresholds(min=20, max=40, critical=44),
    humidity=MetricThresholds(min=20, max=70, critical=85),
    pressure=MetricThresholds(min=10, max=40),
    battery=BatteryThresholds(low=20, critical=10),
    robot_temp=MetricThresholds(min=15, max=45, critical=49),
)

# Offsets used to derive a critical bound when only ``max`` was configured.
TEMPERATURE_CRITICAL_OFFSET = 4.0
HUMIDITY_CRITICAL_OFFSET = 15.0
ROBOT_TEMP_CRITICAL_OFFSET = 4.0

# Batteries up to ``low + FAIR_BATTERY_MARGIN`` are labelled "Fair".
FAIR_BATTERY_MARGIN = 20.0


def _section(raw: Mapping[str, Any], *keys: str) -> Mapping[str, Any]:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, Mapping):
            return value
    return {}


def _pick(section: Mapping[str, Any], key: str, default: float) -> float:
    value = safe_float(section.get(key))
    return default if value is None else value


def _derived(section: Mapping[str, Any], key: str, offset: float, default: float) -> float:
    value = safe_float(section.get(key))
    return default if value is None else value + offset


def _robot_temp(raw: Mapping[str, Any], fallback: Mapping[str, Any]) -> MetricThresholds:
    defaults = DEFAULT_THRESHOLDS.robot_temp
    robot = _section(raw, "robotThresholds", "robot_thresholds")
    if robot:
        return MetricThresholds(
            min=_pick(robot, "tempMin", defaults.min),
            max=_pick(robot, "tempMax", defaults.max),
            critical=_derived(robot, "tempMax", ROBOT_TEMP_CRITICAL_OFFSET, defaults.critical or 0.0),
        )
    return MetricThresholds(
        min=_pick(fallback, "min", defaults.min),
        max=_pick(fallback, "max", defaults.max),
        critical=_pick(fallback, "critical", defaults.critical or 0.0),
    )


def _from_prebuilt(prebuilt: Mapping[str, Any], raw: Mapping[str, Any]) -> Thresholds:
    d = DEFAULT_THRESHOLDS
    temperature = _section(prebuilt, "temperature")
    humidity = _section(prebuilt, "humidity")
    pressure = _section(prebuilt, "pressure")
    battery = _section(prebuilt, "battery")
    return Thresholds(
        temperature=MetricThresholds(
            min=_pick(temperature, "min", d.temperature.min),
            max=_pick(temperature, "max", d.temperature.max),
            critical=_pick(temperature, "critical", d.temperature.critical or 0.0),
        ),
        humidity=MetricThresholds(
            min=_pick(humidity, "min", d.humidity.min),
            max=_pick(humidity, "max", d.humidity.max),
            critical=_pick(humidity, "critical", d.humidity.critical or 0.0),
        ),
        pressure=MetricThresholds(
            min=_pick(pressure, "min", d.pressure.min),
            max=_pick(pressure, "max", d.pressure.max),
        ),
        battery=BatteryThresholds(
            low=_pick(battery, "low", d.battery.low),
            critical=_pick(battery, "critical", d.battery.critical),
        ),
        robot_temp=_robot_temp(raw, _section(prebuilt, "robot_temp", "robotTemp")),
    )


def _from_fields(raw: Mapping[str, Any]) -> Thresholds:
    d = DEFAULT_THRESHOLDS
    temperature = _section(raw, "temperature")
    humidity = _section(raw, "humidity")
    pressure = _section(raw, "pressure")
    battery = _section(raw, "battery")
    return Thresholds(
        temperature=MetricThresholds(
            min=_pick(temperature, "min", d.temperature.min),
            max=_pick(temperature, "max", d.temperature.max),
            critical=_derived(temperature, "max", TEMPERATURE_CRITICAL_OFFSET, d.temperature.critical or 0.0),
        ),
        humidity=MetricThresholds(
            min=_pick(humidity, "min", d.humidity.min),
            max=_pick(humidity, "max", d.humidity.max),
            critical=_derived(humidity, "max", HUMIDITY_CRITICAL_OFFSET, d.humidity.critical or 0.0),
        ),
        pressure=MetricThresholds(
            min=_pick(pressure, "min", d.pressure.min),
            max=_pick(pressure, "max", d.pressure.max),
        ),
        battery=BatteryThresholds(
            low=_pick(battery, "min", d.battery.low),
            critical=_pick(battery, "critical", d.battery.critical),
        ),
        robot_temp=_robot_temp(raw, {}),
    )


def resolve_thresholds(raw: Any) -> Thresholds:
    """Resolve a persisted settings document into a complete threshold set.

    Resolution order:

    1. a pre-built ``thresholds`` object;
    2. raw per-field settings (``temperature.min``, ``battery.min``,
       ``robotThresholds.tempMax``...), deriving critical bounds from ``max``;
    3. :data:`DEFAULT_THRESHOLDS`.

    Never raises: anything unusable falls back to the defaults.
    """
    if not isinstance(raw, Mapping) or not raw:
        return DEFAULT_THRESHOLDS
    prebuilt = raw.get("thresholds")
    if isinstance(prebuilt, Thresholds):
        return prebuilt
    if isinstance(prebuilt, Mapping):
        return _from_prebuilt(prebuilt, raw)
    return _from_fields(raw)


# ------------------------------------------------------------------
# Pure classifiers
# ------------------------------------------------------------------


def classify_range(value: Any, limits: MetricThresholds) -> Severity:
    """Ambient temperature/humidity: above critical is critical, outside ``[min, max]`` warns."""
    number = safe_float(value)
    if number is None:
        return Severity.NORMAL
    if limits.critical is not None and number > limits.critical:
        return Severity.CRITICAL
    if number > limits.max or number < limits.min:
        return Severity.WARNING
    return Severity.NORMAL


def classify_pressure(value: Any, limits: MetricThresholds) -> Severity:
    number = safe_float(value)
    if number is None:
        return Severity.NORMAL
    if number < limits.min or number > limits.max:
        return Severity.CRITICAL
    return Severity.NORMAL


def classify_robot_temp(value: Any, limits: MetricThresholds) -> Severity:
    """Robot body temperature; ``min`` is an absolute safety floor."""
    number = safe_float(value)
    if number is None:
        return Severity.NORMAL
    if limits.critical is not None and number > limits.critical:
        return Severity.CRITICAL
    if number < limits.min:
        return Severity.CRITICAL
    if number > limits.max:
        return Severity.WARNING
    return Severity.NORMAL


def classify_battery(value: Any, limits: BatteryThresholds) -> Severity:
    number = safe_float(value)
    if number is None:
        return Severity.NORMAL
    if number <= limits.critical:
        return Severity.CRITICAL
    if number <= limits.low:
        return Severity.WARNING
    return Severity.NORMAL


def robot_health(battery_pct: Any, limits: BatteryThresholds) -> RobotHealth:
    pct = max(0.0, min(100.0, safe_float(battery_pct) or 0.0))
    if pct <= limits.critical:
        label, status = "Critical", Severity.CRITICAL
    elif pct <= limits.low:
        label, status = "Low", Severity.WARNING
    elif pct <= limits.low + FAIR_BATTERY_MARGIN:
        label, status = "Fair", Severity.NORMAL
    else:
        label, status = "Good", Severity.NORMAL
    return RobotHealth(score=round(pct / 100, 3), label=label, pct=pct, status=status)


class ThresholdResolver:
    """Classifies metrics against the operator's current thresholds.

    Parameters
    ----------
    source
        A fixed :class:`Thresholds`, or a zero-argument callable returning the
        current ones (e.g. :meth:`pyfabrix.settings.SettingsRepository.thresholds`).
        ``None`` uses :data:`DEFAULT_THRESHOLDS`.
    """

    def __init__(self, source: Thresholds | Callable[[], Thresholds] | None = None) -> None:
        self._source = source

    def get_thresholds(self) -> Thresholds:
        if self._source is None:
            return DEFAULT_THRESHOLDS
        if isinstance(self._source, Thresholds):
            return self._source
        try:
            return self._source()
        except Exception:
            _logger.warning("Threshold source failed; using defaults", exc_info=True)
            return DEFAULT_THRESHOLDS

    def get_temperature_status(self, value: Any) -> Severity:
        return classify_range(value, self.get_thresholds().temperature)

    def get_humidity_status(self, value: Any) -> Severity:
        return classify_range(value, self.get_thresholds().humidity)

    def get_pressure_status(self, value: Any) -> Severity:
        return classify_pressure(value, self.get_thresholds().pressure)

    def get_robot_temp_status(self, value: Any) -> Severity:
        return classify_robot_temp(value, self.get_thresholds().robot_temp)

    def get_battery_status(self, value: Any) -> Severity:
        return classify_battery(value, self.get_thresholds().battery)

    def compute_robot_health(self, battery_pct: Any) -> RobotHealth:
        return robot_health(battery_pct, self.get_thresholds().battery)

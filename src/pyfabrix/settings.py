"""Persisted operator configuration.

The settings document lives in an external key-value store behind the
:class:`SettingsBackend` protocol. It is versioned: :func:`migrate_settings`
is the one place that understands legacy, partial or malformed shapes and
turns them into a complete :class:`~pyfabrix.models.settings.FabrixSettings`.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from pyfabrix._redact import redact_for_log
from pyfabrix.exceptions import FabrixValidationError
from pyfabrix.models.settings import (
    SETTINGS_SCHEMA_VERSION,
    BatteryThresholds,
    FabrixSettings,
    MetricThresholds,
    SystemMode,
    Thresholds,
)
from pyfabrix.thresholds import DEFAULT_THRESHOLDS, resolve_thresholds

_logger = logging.getLogger(__name__)

SETTINGS_KEY = "fabrix_settings"
SELECTED_DEVICE_KEY = "selectedDeviceId"
SNAPSHOT_KEY = "fabrix_snapshot"

_MODE_ALIASES = {
    "MANUAL": SystemMode.MANUAL,
    "AUTOMATIC": SystemMode.AUTOMATIC,
    "AUTOMATED": SystemMode.AUTOMATIC,
    "AUTO": SystemMode.AUTOMATIC,
}


class SettingsBackend(Protocol):
    """Minimal key-value contract of the external settings store."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...


class MemorySettingsBackend:
    """In-process backend, used when no settings path is configured."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileSettingsBackend:
    """Stores all keys in one JSON object on disk.

    Writes go through a temporary file and an atomic rename. A missing or
    corrupt file reads as empty.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("Settings file %s is not valid JSON; ignoring it", self._path)
            return {}
        if not isinstance(data, dict):
            _logger.warning("Settings file %s does not hold an object; ignoring it", self._path)
            return {}
        return data

    def get(self, key: str) -> Any | None:
        return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def parse_system_mode(value: Any) -> SystemMode:
    if isinstance(value, str):
        mode = _MODE_ALIASES.get(value.strip().upper())
        if mode is not None:
            return mode
    return SystemMode.MANUAL


def _robot_settings(value: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(value, Mapping):
        return {}
    return {str(robot_id): dict(entry) for robot_id, entry in value.items() if isinstance(entry, Mapping)}


def migrate_settings(raw: Any) -> FabrixSettings:
    """Turn whatever is stored under the settings key into current settings.

    * current documents (``schema_version`` set) are validated as-is;
    * legacy documents (pre-built ``thresholds`` and/or raw per-field
      values, camelCase ``systemMode``/``robotSettings``) are resolved
      through :func:`~pyfabrix.thresholds.resolve_thresholds`;
    * anything else yields the defaults.

    Never raises.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            _logger.warning("Stored settings are not valid JSON; using defaults")
            return FabrixSettings(thresholds=DEFAULT_THRESHOLDS)
    if not isinstance(raw, Mapping):
        if raw is not None:
            _logger.warning("Stored settings have unexpected type %s; using defaults", type(raw).__name__)
        return FabrixSettings(thresholds=DEFAULT_THRESHOLDS)

    if raw.get("schema_version") == SETTINGS_SCHEMA_VERSION:
        try:
            return FabrixSettings.model_validate(raw)
        except ValidationError:
            _logger.warning(
                "Stored settings failed validation; migrating as legacy: %s",
                redact_for_log(dict(raw)),
                exc_info=True,
            )

    return FabrixSettings(
        schema_version=SETTINGS_SCHEMA_VERSION,
        thresholds=resolve_thresholds(raw),
        system_mode=parse_system_mode(raw.get("system_mode", raw.get("systemMode"))),
        robot_settings=_robot_settings(raw.get("robot_settings", raw.get("robotSettings"))),
    )


def validate_thresholds(thresholds: Thresholds) -> None:
    """Raise :class:`FabrixValidationError` listing every inconsistent field."""
    errors: dict[str, str] = {}
    ranges: dict[str, MetricThresholds] = {
        "temperature": thresholds.temperature,
        "humidity": thresholds.humidity,
        "pressure": thresholds.pressure,
        "robot_temp": thresholds.robot_temp,
    }
    for name, limits in ranges.items():
        if limits.min >= limits.max:
            errors[name] = f"min ({limits.min:g}) must be less than max ({limits.max:g})"
        elif limits.critical is not None and limits.critical < limits.max:
            errors[name] = f"critical ({limits.critical:g}) must not be below max ({limits.max:g})"
    battery = thresholds.battery
    if not 0 <= battery.critical < battery.low <= 100:
        errors["battery"] = f"critical ({battery.critical:g}) must be below low ({battery.low:g}) within 0-100"
    if errors:
        raise FabrixValidationError(errors)


class SettingsRepository:
    """Typed access to the persisted settings, selected device and snapshot."""

    def __init__(self, backend: SettingsBackend | None = None) -> None:
        self._backend: SettingsBackend = backend if backend is not None else MemorySettingsBackend()
        self._cached: FabrixSettings | None = None

    @property
    def backend(self) -> SettingsBackend:
        return self._backend

    def load(self) -> FabrixSettings:
        if self._cached is None:
            self._cached = migrate_settings(self._backend.get(SETTINGS_KEY))
        return self._cached

    def reload(self) -> FabrixSettings:
        self._cached = None
        return self.load()

    def save(self, settings: FabrixSettings) -> None:
        validate_thresholds(settings.thresholds)
        self._backend.set(SETTINGS_KEY, settings.model_dump(mode="json"))
        self._cached = settings
        _logger.info("Settings saved (mode=%s)", settings.system_mode)

    # -- thresholds ----------------------------------------------------

    def thresholds(self) -> Thresholds:
        return self.load().thresholds

    def update_thresholds(self, thresholds: Thresholds | Mapping[str, Any]) -> Thresholds:
        """Validate and persist new thresholds.

        A mapping is merged over the current thresholds per metric, e.g.
        ``{"temperature": {"max": 35}}``. Nothing is written when validation
        fails.
        """
        current = self.thresholds()
        if isinstance(thresholds, Thresholds):
            updated = thresholds
        else:
            merged = current.model_dump()
            field_errors: dict[str, str] = {}
            for name, patch in thresholds.items():
                if name not in merged:
                    field_errors[name] = "unknown threshold"
                elif not isinstance(patch, Mapping):
                    field_errors[name] = "expected a mapping of limits"
                else:
                    merged[name] = {**merged[name], **patch}
            if field_errors:
                raise FabrixValidationError(field_errors)
            try:
                updated = Thresholds(
                    temperature=MetricThresholds.model_validate(merged["temperature"]),
                    humidity=MetricThresholds.model_validate(merged["humidity"]),
                    pressure=MetricThresholds.model_validate(merged["pressure"]),
                    battery=BatteryThresholds.model_validate(merged["battery"]),
                    robot_temp=MetricThresholds.model_validate(merged["robot_temp"]),
                )
            except ValidationError as exc:
                raise FabrixValidationError(
                    {".".join(str(part) for part in error["loc"]) or "thresholds": error["msg"] for error in exc.errors()}
                ) from exc
        self.save(self.load().model_copy(update={"thresholds": updated}))
        return updated

    # -- mode / per-robot ----------------------------------------------

    def system_mode(self) -> SystemMode:
        return self.load().system_mode

    def set_system_mode(self, mode: SystemMode | str) -> SystemMode:
        parsed = _MODE_ALIASES.get(str(mode).strip().upper())
        if parsed is None:
            raise FabrixValidationError({"system_mode": f"unknown mode {mode!r}"})
        self.save(self.load().model_copy(update={"system_mode": parsed}))
        return parsed

    def robot_settings(self, robot_id: str) -> dict[str, Any]:
        return dict(self.load().robot_settings.get(robot_id, {}))

    def update_robot_settings(self, robot_id: str, **values: Any) -> dict[str, Any]:
        current = self.load()
        entry = {**current.robot_settings.get(robot_id, {}), **values}
        robot_settings = {**current.robot_settings, robot_id: entry}
        self.save(current.model_copy(update={"robot_settings": robot_settings}))
        return dict(entry)

    # -- selected device / snapshot --------------------------------------

    def selected_device_id(self) -> str | None:
        value = self._backend.get(SELECTED_DEVICE_KEY)
        return value if isinstance(value, str) and value else None

    def set_selected_device_id(self, device_id: str) -> None:
        self._backend.set(SELECTED_DEVICE_KEY, device_id)

    def save_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        self._backend.set(SNAPSHOT_KEY, dict(snapshot))

    def load_snapshot(self) -> dict[str, Any] | None:
        value = self._backend.get(SNAPSHOT_KEY)
        if value is None:
            return None
        if not isinstance(value, dict):
            _logger.warning("Stored snapshot has unexpected type %s; ignoring it", type(value).__name__)
            return None
        return value

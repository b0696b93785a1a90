"""Telemetry store.

This is the only component allowed to merge incoming telemetry events. It
owns the canonical per-device and per-robot records, the alert log and the
unparsed-message log.

Records are frozen pydantic models and the per-device robot maps are
replaced, never mutated, on every update: anything handed out by a query
stays valid while the store keeps reconciling.
"""

from __future__ import annotations

import collections
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import Any, TypeVar, cast

from pydantic import BaseModel, ValidationError

from pyfabrix._constants import ALERT_DEDUP_WINDOW, MAX_ALERTS, MAX_UNPARSED_RECORDS
from pyfabrix._redact import redact_for_log
from pyfabrix.config import DEFAULT_DEVICES, DeviceDescriptor
from pyfabrix.models.alert import Alert, Severity
from pyfabrix.models.device import DeviceState
from pyfabrix.models.robot import RobotState
from pyfabrix.models.task import Task, TaskPhase
from pyfabrix.state import rules
from pyfabrix.state.alerts import AlertLog
from pyfabrix.state.events import EventKind, TelemetryEvent
from pyfabrix.state.policy import is_live, should_overwrite, touches_liveness
from pyfabrix.state.tasks import TaskTimings, evaluate_task, merge_task_update
from pyfabrix.thresholds import ThresholdResolver

_logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

RobotDiscoveredCallback = Callable[[str, str], None]
RobotEvictedCallback = Callable[[str, str], None]

TModel = TypeVar("TModel", bound=BaseModel)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _merge_model(model: TModel, patch: Mapping[str, Any], *, overwrite: bool) -> TModel:
    """Apply a normalized patch to a frozen record.

    The ingestion/Pydantic boundary is responsible for pruning placeholders,
    so keys in the patch overwrite. When ``overwrite`` is false only fields
    that are still unknown are filled.
    """
    fields = type(model).model_fields
    update = {key: value for key, value in patch.items() if key in fields}
    if not overwrite:
        update = {key: value for key, value in update.items() if getattr(model, key) is None}
    if not update:
        return model
    return model.model_copy(update=update)


class TelemetryStore:
    """Canonical device/robot state reconciled from telemetry events.

    Parameters
    ----------
    devices
        The fixed device roster; one record is created per entry.
    thresholds
        Classifier used for severities and alerts.
    clock
        Returns the current UTC time; ``last_update``, alert timestamps and
        liveness all use it.
    task_timings
        Elapsed-time fallbacks for the task state machine.
    on_robot_discovered
        Called with ``(device_id, robot_id)`` whenever a robot is first seen
        under a device, so the owner can subscribe to its topics.
    on_robot_evicted
        Called with ``(device_id, robot_id)`` for every robot removed by
        :meth:`evict_stale_robots`, so the owner can drop its topics.
    """

    def __init__(
        self,
        *,
        devices: Iterable[DeviceDescriptor] = DEFAULT_DEVICES,
        thresholds: ThresholdResolver | None = None,
        clock: Callable[[], datetime] = _utcnow,
        task_timings: TaskTimings | None = None,
        on_robot_discovered: RobotDiscoveredCallback | None = None,
        on_robot_evicted: RobotEvictedCallback | None = None,
        alert_window: timedelta = ALERT_DEDUP_WINDOW,
        alert_capacity: int = MAX_ALERTS,
        unparsed_capacity: int = MAX_UNPARSED_RECORDS,
    ) -> None:
        self._roster: tuple[DeviceDescriptor, ...] = tuple(devices)
        self._thresholds = thresholds or ThresholdResolver()
        self._clock = clock
        self._task_timings = task_timings or TaskTimings()
        self._on_robot_discovered = on_robot_discovered
        self._on_robot_evicted = on_robot_evicted
        self._alerts = AlertLog(clock=clock, window=alert_window, capacity=alert_capacity)
        self._unparsed: collections.deque[TelemetryEvent] = collections.deque(maxlen=unparsed_capacity)
        self._devices: dict[str, DeviceState] = {}
        self._robots: dict[str, dict[str, RobotState]] = {}
        self._robot_home: dict[str, str] = {}
        self._handlers: dict[EventKind, Callable[[TelemetryEvent, datetime], None]] = {
            EventKind.ENVIRONMENT: self._apply_environment,
            EventKind.AC: self._apply_control,
            EventKind.AIR_PURIFIER: self._apply_control,
            EventKind.STATUS: self._apply_status,
            EventKind.TASK_SUMMARY: self._apply_task_summary,
            EventKind.ROBOT_DISCOVERY: self._apply_discovery,
            EventKind.ROBOT_LOCATION: self._apply_robot_location,
            EventKind.ROBOT_TEMPERATURE: self._apply_robot_temperature,
            EventKind.ROBOT_STATUS: self._apply_robot_status,
            EventKind.ROBOT_BATTERY: self._apply_robot_status,
            EventKind.ROBOT_TASK: self._apply_robot_task,
        }
        self.reset()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop all robots, alerts and readings; recreate the device records."""
        self._devices = {d.id: DeviceState(id=d.id, name=d.name, zone=d.zone) for d in self._roster}
        self._robots = {d.id: {} for d in self._roster}
        self._robot_home = {}
        self._alerts.clear_all()
        self._unparsed.clear()

    def set_robot_discovered_callback(self, callback: RobotDiscoveredCallback | None) -> None:
        self._on_robot_discovered = callback

    def set_robot_evicted_callback(self, callback: RobotEvictedCallback | None) -> None:
        self._on_robot_evicted = callback

    @property
    def thresholds(self) -> ThresholdResolver:
        return self._thresholds

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, event: TelemetryEvent) -> None:
        """Apply a normalized telemetry event."""
        now = self._clock()
        if event.kind is EventKind.UNPARSED:
            self._unparsed.append(event)
            _logger.debug("Retained unparsed message on %s", event.topic)
            return

        if event.device_id not in self._devices:
            _logger.warning("Ignoring %s event for unknown device %s", event.kind, event.device_id)
            return

        if event.kind.targets_robot and event.robot_id is None:
            _logger.warning("Ignoring %s event without robot id on %s", event.kind, event.topic)
            return

        _logger.debug(
            "Applying %s event for %s/%s: %s",
            event.kind,
            event.device_id,
            event.robot_id,
            redact_for_log(event.data),
        )
        self._handlers[event.kind](event, now)

    def tick(self) -> None:
        """Evaluate time-based task transitions without a new location fix."""
        now = self._clock()
        for device_id, robots in list(self._robots.items()):
            for robot in list(robots.values()):
                if robot.task is None or robot.task.phase.is_terminal:
                    continue
                task = evaluate_task(robot.task, robot.location, now, self._task_timings)
                if task is not robot.task:
                    self._replace_robot(self._with_task(robot, task, device_id))

    # ------------------------------------------------------------------
    # Device handlers
    # ------------------------------------------------------------------

    def _device_overwrite(self, device: DeviceState, event: TelemetryEvent) -> bool:
        return should_overwrite(has_live_data=device.last_update is not None, incoming_source=event.source)

    def _replace_device(self, device: DeviceState, event: TelemetryEvent, now: datetime) -> None:
        update: dict[str, Any] = {"severity": rules.device_severity(device, self._thresholds.get_thresholds())}
        if touches_liveness(event.source):
            update["last_update"] = now
        self._devices[device.id] = device.model_copy(update=update)

    def _raise_alerts(self, device_id: str, candidates: Iterable[rules.AlertCandidate]) -> None:
        for candidate in candidates:
            self._alerts.add(
                candidate.severity,
                device_id,
                candidate.message,
                robot_id=candidate.robot_id,
                metric=candidate.metric,
            )

    def _apply_environment(self, event: TelemetryEvent, now: datetime) -> None:
        device = self._devices[event.device_id]
        environment = _merge_model(device.environment, event.data, overwrite=self._device_overwrite(device, event))
        self._replace_device(device.model_copy(update={"environment": environment}), event, now)
        if touches_liveness(event.source):
            self._raise_alerts(event.device_id, rules.environment_alerts(event.data, self._thresholds.get_thresholds()))

    def _apply_control(self, event: TelemetryEvent, now: datetime) -> None:
        device = self._devices[event.device_id]
        state = _merge_model(device.state, event.data, overwrite=self._device_overwrite(device, event))
        self._replace_device(device.model_copy(update={"state": state}), event, now)

    def _apply_status(self, event: TelemetryEvent, now: datetime) -> None:
        self._apply_control(event, now)
        if touches_liveness(event.source):
            self._raise_alerts(event.device_id, rules.status_alerts(event.data))

    def _apply_task_summary(self, event: TelemetryEvent, now: datetime) -> None:
        device = self._devices[event.device_id]
        if device.task_summary is not None and not self._device_overwrite(device, event):
            return
        self._replace_device(device.model_copy(update={"task_summary": dict(event.data)}), event, now)

    def _apply_discovery(self, event: TelemetryEvent, now: datetime) -> None:
        robot_ids = event.data.get("robots") or []
        _logger.info("Discovered robots on %s: %s", event.device_id, robot_ids)
        for robot_id in robot_ids:
            self.register_robot(event.device_id, robot_id)
        device = self._devices[event.device_id]
        if touches_liveness(event.source):
            self._devices[event.device_id] = device.model_copy(update={"last_update": now})

    # ------------------------------------------------------------------
    # Robot handlers
    # ------------------------------------------------------------------

    def register_robot(self, device_id: str, robot_id: str) -> RobotState:
        """Register ``robot_id`` under ``device_id`` (idempotent).

        Re-registering never resets existing fields. A robot already known
        under another device is moved, keeping its state.
        """
        if device_id not in self._devices:
            raise KeyError(device_id)
        home = self._robot_home.get(robot_id)
        if home == device_id:
            return self._robots[device_id][robot_id]

        if home is not None:
            robot = self._robots[home][robot_id].model_copy(update={"device_id": device_id})
            self._robots[home] = {rid: r for rid, r in self._robots[home].items() if rid != robot_id}
            _logger.info("Robot %s moved from %s to %s", robot_id, home, device_id)
        else:
            robot = RobotState(id=robot_id, device_id=device_id, discovered_at=self._clock())
            _logger.info("Registered robot %s on %s", robot_id, device_id)

        self._replace_robot(robot)
        if self._on_robot_discovered is not None:
            try:
                self._on_robot_discovered(device_id, robot_id)
            except Exception:
                _logger.warning("Robot discovery callback failed for %s/%s", device_id, robot_id, exc_info=True)
        return robot

    def _replace_robot(self, robot: RobotState) -> None:
        severity = rules.robot_severity(robot, self._thresholds.get_thresholds())
        if severity is not robot.severity:
            robot = robot.model_copy(update={"severity": severity})
        self._robots[robot.device_id] = {**self._robots[robot.device_id], robot.id: robot}
        self._robot_home[robot.id] = robot.device_id

    def _robot_for(self, event: TelemetryEvent) -> RobotState:
        return self.register_robot(event.device_id, cast(str, event.robot_id))

    def _robot_overwrite(self, robot: RobotState, event: TelemetryEvent) -> bool:
        return should_overwrite(has_live_data=robot.last_update is not None, incoming_source=event.source)

    def _touch(self, robot: RobotState, event: TelemetryEvent, now: datetime, **update: Any) -> RobotState:
        if touches_liveness(event.source):
            update["last_update"] = now
        return robot.model_copy(update=update) if update else robot

    def _with_task(self, robot: RobotState, task: Task, device_id: str) -> RobotState:
        previous = robot.task
        if task.phase is TaskPhase.FAILED and (previous is None or previous.phase is not TaskPhase.FAILED):
            self._raise_alerts(device_id, [rules.task_failed_alert(robot.id, task)])
        return robot.model_copy(update={"task": task})

    def _apply_robot_location(self, event: TelemetryEvent, now: datetime) -> None:
        robot = self._robot_for(event)
        overwrite = self._robot_overwrite(robot, event)
        location = _merge_model(robot.location, event.data, overwrite=overwrite)
        update: dict[str, Any] = {"location": location}
        heading = event.data.get("heading")
        if heading is not None and overwrite:
            update["heading"] = heading
        robot = self._touch(robot, event, now, **update)
        if robot.task is not None and not robot.task.phase.is_terminal:
            task = evaluate_task(robot.task, robot.location, now, self._task_timings)
            if task is not robot.task:
                robot = self._with_task(robot, task, event.device_id)
        self._replace_robot(robot)

    def _apply_robot_temperature(self, event: TelemetryEvent, now: datetime) -> None:
        robot = self._robot_for(event)
        environment = _merge_model(robot.environment, event.data, overwrite=self._robot_overwrite(robot, event))
        self._replace_robot(self._touch(robot, event, now, environment=environment))
        if touches_liveness(event.source):
            self._raise_alerts(
                event.device_id,
                rules.robot_temperature_alerts(robot.id, event.data, self._thresholds.get_thresholds()),
            )

    def _apply_robot_status(self, event: TelemetryEvent, now: datetime) -> None:
        robot = self._robot_for(event)
        status = _merge_model(robot.status, event.data, overwrite=self._robot_overwrite(robot, event))
        self._replace_robot(self._touch(robot, event, now, status=status))
        if touches_liveness(event.source):
            self._raise_alerts(
                event.device_id,
                rules.robot_status_alerts(robot.id, event.data, self._thresholds.get_thresholds()),
            )

    def _apply_robot_task(self, event: TelemetryEvent, now: datetime) -> None:
        robot = self._robot_for(event)
        location = robot.location if robot.location.has_fix else None
        task = merge_task_update(robot.task, event.data, now=now, location=location)
        robot = self._with_task(robot, task, event.device_id)
        self._replace_robot(self._touch(robot, event, now))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def device_ids(self) -> tuple[str, ...]:
        return tuple(self._devices)

    def get_device(self, device_id: str) -> DeviceState | None:
        return self._devices.get(device_id)

    def get_devices(self) -> Mapping[str, DeviceState]:
        return MappingProxyType(dict(self._devices))

    def get_robots(self, device_id: str) -> Mapping[str, RobotState]:
        """Robots currently homed on ``device_id`` (empty for unknown devices)."""
        return MappingProxyType(self._robots.get(device_id, {}))

    def get_robot(self, device_id: str, robot_id: str) -> RobotState | None:
        return self._robots.get(device_id, {}).get(robot_id)

    def find_robot(self, robot_id: str) -> RobotState | None:
        home = self._robot_home.get(robot_id)
        return self._robots[home].get(robot_id) if home is not None else None

    def list_alerts(self) -> tuple[Alert, ...]:
        """Alerts, most recent first."""
        return self._alerts.entries()

    def add_alert(
        self,
        severity: Severity,
        device_id: str,
        message: str,
        *,
        robot_id: str | None = None,
        metric: str | None = None,
    ) -> Alert | None:
        return self._alerts.add(severity, device_id, message, robot_id=robot_id, metric=metric)

    def clear_alert(self, alert_id: str) -> bool:
        return self._alerts.clear(alert_id)

    def clear_alerts(self) -> None:
        self._alerts.clear_all()

    def is_device_live(self, device_id: str) -> bool:
        device = self._devices.get(device_id)
        return device is not None and is_live(device.last_update, self._clock())

    def is_robot_live(self, device_id: str, robot_id: str) -> bool:
        robot = self.get_robot(device_id, robot_id)
        return robot is not None and is_live(robot.last_update, self._clock())

    def unparsed_records(self) -> tuple[TelemetryEvent, ...]:
        return tuple(self._unparsed)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def evict_stale_robots(self, max_age: timedelta) -> list[tuple[str, str]]:
        """Remove robots silent for at least ``max_age``.

        Robots that never reported are aged from their discovery time.
        Returns the evicted ``(device_id, robot_id)`` pairs.
        """
        now = self._clock()
        evicted: list[tuple[str, str]] = []
        for device_id, robots in list(self._robots.items()):
            keep: dict[str, RobotState] = {}
            for robot_id, robot in robots.items():
                seen = robot.last_update or robot.discovered_at
                if seen is not None and now - seen < max_age:
                    keep[robot_id] = robot
                else:
                    evicted.append((device_id, robot_id))
                    self._robot_home.pop(robot_id, None)
            if len(keep) != len(robots):
                self._robots[device_id] = keep
        if evicted:
            _logger.info("Evicted stale robots: %s", evicted)
        if self._on_robot_evicted is not None:
            for device_id, robot_id in evicted:
                try:
                    self._on_robot_evicted(device_id, robot_id)
                except Exception:
                    _logger.warning("Robot eviction callback failed for %s/%s", device_id, robot_id, exc_info=True)
        return evicted

    def snapshot(self) -> dict[str, Any]:
        """JSON-serializable warm-start snapshot of devices and robots (not alerts)."""
        return {
            "version": SNAPSHOT_VERSION,
            "taken_at": self._clock().isoformat(),
            "devices": [device.model_dump(mode="json") for device in self._devices.values()],
            "robots": [robot.model_dump(mode="json") for robots in self._robots.values() for robot in robots.values()],
        }

    def restore(self, snapshot: Mapping[str, Any]) -> int:
        """Load a snapshot produced by :meth:`snapshot`.

        Restored records keep their ``last_update`` and therefore show as
        not live. Entries for devices outside the roster, or that fail
        validation, are skipped. Returns the number of restored records.
        """
        if snapshot.get("version") != SNAPSHOT_VERSION:
            _logger.warning("Ignoring snapshot with unsupported version %r", snapshot.get("version"))
            return 0
        restored = 0
        for entry in snapshot.get("devices") or []:
            try:
                device = DeviceState.model_validate(entry)
            except ValidationError:
                _logger.warning("Skipping invalid device in snapshot", exc_info=True)
                continue
            if device.id not in self._devices:
                _logger.warning("Skipping snapshot device %s outside the roster", device.id)
                continue
            roster = self._devices[device.id]
            self._devices[device.id] = device.model_copy(update={"name": roster.name, "zone": roster.zone})
            restored += 1
        for entry in snapshot.get("robots") or []:
            try:
                robot = RobotState.model_validate(entry)
            except ValidationError:
                _logger.warning("Skipping invalid robot in snapshot", exc_info=True)
                continue
            if robot.device_id not in self._devices:
                _logger.warning("Skipping snapshot robot %s on unknown device %s", robot.id, robot.device_id)
                continue
            home = self._robot_home.get(robot.id)
            if home is not None and home != robot.device_id:
                self._robots[home] = {rid: r for rid, r in self._robots[home].items() if rid != robot.id}
            self._replace_robot(robot)
            restored += 1
        _logger.info("Restored %d records from snapshot", restored)
        return restored

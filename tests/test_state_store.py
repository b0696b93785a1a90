from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pyfabrix.models.alert import Severity
from pyfabrix.models.task import TaskPhase
from pyfabrix.spatial import resolve_room
from pyfabrix.state.events import EventKind, EventSource, TelemetryEvent
from pyfabrix.state.store import TelemetryStore

DEVICE = "device9988"
OTHER_DEVICE = "deviceZX91"


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _event(
    kind: EventKind,
    data: dict[str, Any],
    *,
    source: EventSource = EventSource.STREAM,
    device_id: str = DEVICE,
    robot_id: str | None = None,
) -> TelemetryEvent:
    return TelemetryEvent(device_id=device_id, robot_id=robot_id, kind=kind, source=source, data=data)


def test_store_starts_with_roster_devices() -> None:
    store = TelemetryStore(clock=_Clock())
    assert set(store.device_ids()) == {"device9988", "device0011233", "deviceA72Q", "deviceZX91"}
    device = store.get_device(DEVICE)
    assert device is not None
    assert device.zone == "Cleanroom A"
    assert device.last_update is None


def test_partial_update_keeps_other_fields() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 22.0, "humidity": 40.0}))
    store.apply(_event(EventKind.ENVIRONMENT, {"humidity": 42.0}))

    device = store.get_device(DEVICE)
    assert device is not None
    assert device.environment.temperature == 22.0
    assert device.environment.humidity == 42.0


def test_live_update_refreshes_liveness() -> None:
    clock = _Clock()
    store = TelemetryStore(clock=clock)
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 22.0}))

    assert store.is_device_live(DEVICE)
    clock.advance(2.999)
    assert store.is_device_live(DEVICE)
    clock.advance(0.001)
    assert not store.is_device_live(DEVICE)


def test_history_fills_gaps_but_never_overrides_live_values() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 22.0}))
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 30.0, "pressure": 20.0}, source=EventSource.HISTORY))

    device = store.get_device(DEVICE)
    assert device is not None
    assert device.environment.temperature == 22.0
    assert device.environment.pressure == 20.0


def test_history_before_live_data_populates_without_liveness_or_alerts() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 50.0}, source=EventSource.HISTORY))

    device = store.get_device(DEVICE)
    assert device is not None
    assert device.environment.temperature == 50.0
    assert device.severity is Severity.CRITICAL
    assert device.last_update is None
    assert store.list_alerts() == ()


def test_environment_alerts_and_dedup() -> None:
    clock = _Clock()
    store = TelemetryStore(clock=clock)
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 41.0}))
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 41.0}))

    alerts = store.list_alerts()
    assert [alert.message for alert in alerts] == ["High temperature detected: 41°C (max: 40°C)"]
    assert alerts[0].severity is Severity.WARNING

    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 45.0, "pressure": 50.0}))
    messages = {alert.message for alert in store.list_alerts()}
    assert "CRITICAL: Temperature at 45°C exceeds 44°C" in messages
    assert "Abnormal pressure detected: 50 hPa (range: 10-40 hPa)" in messages


def test_low_humidity_alert_message() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ENVIRONMENT, {"humidity": 12.0}))
    assert store.list_alerts()[0].message == "Low humidity detected: 12% (min: 20%)"


def test_active_alert_flag_raises_critical_alert() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.STATUS, {"active_alert": "Door open"}, source=EventSource.STATE))
    store.apply(_event(EventKind.STATUS, {"active_alert": "NONE"}, source=EventSource.STATE))

    alerts = store.list_alerts()
    assert [(alert.severity, alert.message) for alert in alerts] == [(Severity.CRITICAL, "Door open")]
    device = store.get_device(DEVICE)
    assert device is not None
    assert device.severity is Severity.NORMAL


def test_control_state_updates() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.AC, {"ac_power": "ON"}, source=EventSource.STATE))
    store.apply(_event(EventKind.AIR_PURIFIER, {"air_purifier": "ACTIVE"}, source=EventSource.STATE))

    device = store.get_device(DEVICE)
    assert device is not None
    assert (device.state.ac_power, device.state.air_purifier) == ("ON", "ACTIVE")


def test_unknown_device_is_ignored() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 22.0}, device_id="device-x"))
    assert store.get_device("device-x") is None


def test_discovery_registers_robots_and_notifies_once() -> None:
    discovered: list[tuple[str, str]] = []
    store = TelemetryStore(clock=_Clock(), on_robot_discovered=lambda d, r: discovered.append((d, r)))

    store.apply(_event(EventKind.ROBOT_DISCOVERY, {"robots": ["r1", "r2"]}))
    store.apply(_event(EventKind.ROBOT_DISCOVERY, {"robots": ["r1"]}))

    assert discovered == [(DEVICE, "r1"), (DEVICE, "r2")]
    assert set(store.get_robots(DEVICE)) == {"r1", "r2"}
    robot = store.get_robot(DEVICE, "r1")
    assert robot is not None
    assert robot.location.lat is None
    assert robot.last_update is None


def test_rediscovery_on_same_device_keeps_existing_fields() -> None:
    clock = _Clock()
    discovered: list[tuple[str, str]] = []
    store = TelemetryStore(clock=clock, on_robot_discovered=lambda d, r: discovered.append((d, r)))
    store.apply(_event(EventKind.ROBOT_LOCATION, {"lat": 37.4219, "lng": -122.0845}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 73.0}, robot_id="r1"))
    before = store.get_robot(DEVICE, "r1")
    assert before is not None

    clock.advance(1)
    store.apply(_event(EventKind.ROBOT_DISCOVERY, {"robots": ["r1"]}))
    assert store.register_robot(DEVICE, "r1") == before

    after = store.get_robot(DEVICE, "r1")
    assert after is not None
    assert (after.location.lat, after.location.lng) == (37.4219, -122.0845)
    assert after.status.battery == 73.0
    assert after.last_update == before.last_update
    assert list(store.get_robots(DEVICE)) == ["r1"]
    assert discovered == [(DEVICE, "r1")]


def test_discovery_callback_failure_does_not_break_ingestion() -> None:
    def explode(device_id: str, robot_id: str) -> None:
        raise RuntimeError("subscriber down")

    store = TelemetryStore(clock=_Clock(), on_robot_discovered=explode)
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 80.0}, robot_id="r1"))

    robot = store.get_robot(DEVICE, "r1")
    assert robot is not None
    assert robot.status.battery == 80.0


def test_robot_moves_between_devices_keeping_state() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 64.0}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_DISCOVERY, {"robots": ["r1"]}, device_id=OTHER_DEVICE))

    assert "r1" not in store.get_robots(DEVICE)
    moved = store.get_robot(OTHER_DEVICE, "r1")
    assert moved is not None
    assert moved.device_id == OTHER_DEVICE
    assert moved.status.battery == 64.0
    assert store.find_robot("r1") == moved


def test_robot_event_without_robot_id_is_ignored() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 50.0}))
    assert not store.get_robots(DEVICE)


def test_robot_battery_alerts_and_severity() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 15.0}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_STATUS, {"battery": 8.0}, robot_id="r2"))

    messages = [alert.message for alert in store.list_alerts()]
    assert messages == ["CRITICAL: Robot r2 battery at 8%", "Robot r1 low battery: 15%"]
    r1 = store.get_robot(DEVICE, "r1")
    r2 = store.get_robot(DEVICE, "r2")
    assert r1 is not None and r1.severity is Severity.WARNING
    assert r2 is not None and r2.severity is Severity.CRITICAL


def test_obstacle_and_error_state_are_critical() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ROBOT_STATUS, {"obstacle_detected": True}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_STATUS, {"state": "ERROR"}, robot_id="r2"))

    assert "Robot r1 obstacle detected!" in [alert.message for alert in store.list_alerts()]
    for robot_id in ("r1", "r2"):
        robot = store.get_robot(DEVICE, robot_id)
        assert robot is not None and robot.severity is Severity.CRITICAL


def test_robot_temperature_alerts() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ROBOT_TEMPERATURE, {"temp": 52.0}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_TEMPERATURE, {"temp": 10.0}, robot_id="r2"))

    messages = [alert.message for alert in store.list_alerts()]
    assert messages == ["Robot r2 temperature too low: 10°C (min: 15°C)", "Robot r1 overheating: 52°C"]


def test_robot_location_updates_heading_and_liveness() -> None:
    clock = _Clock()
    store = TelemetryStore(clock=clock)
    store.apply(_event(EventKind.ROBOT_LOCATION, {"lat": 37.4218, "lng": -122.0837, "heading": 180.0}, robot_id="r1"))

    robot = store.get_robot(DEVICE, "r1")
    assert robot is not None
    assert (robot.location.lat, robot.location.lng, robot.heading) == (37.4218, -122.0837, 180.0)
    assert store.is_robot_live(DEVICE, "r1")
    clock.advance(3)
    assert not store.is_robot_live(DEVICE, "r1")


def test_failed_task_raises_warning_once() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ROBOT_TASK, {"task_id": "T1", "source_name": "Cleanroom A"}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_TASK, {"task_id": "T1", "phase": "FAILED"}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_TASK, {"task_id": "T1", "phase": "FAILED"}, robot_id="r1"))

    robot = store.get_robot(DEVICE, "r1")
    assert robot is not None and robot.task is not None
    assert robot.task.phase is TaskPhase.FAILED
    assert [(alert.severity, alert.message) for alert in store.list_alerts()] == [
        (Severity.WARNING, "Robot r1 task T1 failed")
    ]


def test_tick_completes_delivery_after_dwell() -> None:
    clock = _Clock()
    store = TelemetryStore(clock=clock)
    storage = resolve_room("Storage")
    assert storage is not None
    store.apply(
        _event(EventKind.ROBOT_LOCATION, {"lat": storage.center.lat, "lng": storage.center.lng}, robot_id="r1")
    )
    store.apply(
        _event(
            EventKind.ROBOT_TASK,
            {"task_id": "T1", "phase": "DELIVERING", "source_name": "Cleanroom A", "destination_name": "Storage"},
            robot_id="r1",
        )
    )

    clock.advance(5)
    store.tick()
    robot = store.get_robot(DEVICE, "r1")
    assert robot is not None and robot.task is not None
    assert robot.task.phase is TaskPhase.DELIVERING

    clock.advance(5)
    store.tick()
    robot = store.get_robot(DEVICE, "r1")
    assert robot is not None and robot.task is not None
    assert (robot.task.phase, robot.task.progress) == (TaskPhase.COMPLETED, 100)


def test_unparsed_events_are_retained_without_touching_state() -> None:
    store = TelemetryStore(clock=_Clock(), unparsed_capacity=2)
    for index in range(3):
        store.apply(_event(EventKind.UNPARSED, {"raw": f"bad {index}"}, robot_id="r1"))

    assert [event.data["raw"] for event in store.unparsed_records()] == ["bad 1", "bad 2"]
    assert not store.get_robots(DEVICE)
    device = store.get_device(DEVICE)
    assert device is not None and device.last_update is None


def test_query_results_are_not_mutated_by_later_updates() -> None:
    store = TelemetryStore(clock=_Clock())
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 70.0}, robot_id="r1"))
    before = store.get_robots(DEVICE)

    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 60.0}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 50.0}, robot_id="r2"))

    assert set(before) == {"r1"}
    assert before["r1"].status.battery == 70.0
    with pytest.raises(TypeError):
        before["r3"] = before["r1"]  # type: ignore[index]


def test_evict_stale_robots_is_opt_in() -> None:
    clock = _Clock()
    store = TelemetryStore(clock=clock)
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 70.0}, robot_id="r1"))
    clock.advance(120)
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 70.0}, robot_id="r2"))

    assert set(store.get_robots(DEVICE)) == {"r1", "r2"}
    evicted = store.evict_stale_robots(timedelta(seconds=60))

    assert evicted == [(DEVICE, "r1")]
    assert set(store.get_robots(DEVICE)) == {"r2"}
    assert store.find_robot("r1") is None


def test_eviction_notifies_callback_and_survives_its_failure() -> None:
    clock = _Clock()
    seen: list[tuple[str, str]] = []

    def on_evicted(device_id: str, robot_id: str) -> None:
        seen.append((device_id, robot_id))
        raise RuntimeError("boom")

    store = TelemetryStore(clock=clock, on_robot_evicted=on_evicted)
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 70.0}, robot_id="r1"))
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 60.0}, robot_id="r2"))
    clock.advance(120)

    assert store.evict_stale_robots(timedelta(seconds=60)) == [(DEVICE, "r1"), (DEVICE, "r2")]
    assert seen == [(DEVICE, "r1"), (DEVICE, "r2")]
    assert not store.get_robots(DEVICE)


def test_snapshot_round_trip_restores_records_as_not_live() -> None:
    clock = _Clock()
    store = TelemetryStore(clock=clock)
    store.apply(_event(EventKind.ENVIRONMENT, {"temperature": 25.0}))
    store.apply(_event(EventKind.ROBOT_BATTERY, {"battery": 42.0}, robot_id="r1"))
    store.add_alert(Severity.WARNING, DEVICE, "manual")
    snapshot = store.snapshot()

    clock.advance(60)
    restored_store = TelemetryStore(clock=clock)
    restored = restored_store.restore(snapshot)

    assert restored == 5
    device = restored_store.get_device(DEVICE)
    robot = restored_store.get_robot(DEVICE, "r1")
    assert device is not None and device.environment.temperature == 25.0
    assert robot is not None and robot.status.battery == 42.0
    assert not restored_store.is_device_live(DEVICE)
    assert restored_store.list_alerts() == ()


def test_restore_rejects_unknown_version_and_devices() -> None:
    store = TelemetryStore(clock=_Clock())
    assert store.restore({"version": 99, "devices": []}) == 0
    restored = store.restore(
        {
            "version": 1,
            "devices": [{"id": "device-x"}, {"id": DEVICE, "name": "Renamed"}],
            "robots": [{"id": "r9", "device_id": "device-x"}, {"id": "r1"}],
        }
    )

    assert restored == 1
    device = store.get_device(DEVICE)
    assert device is not None and device.name == "Device 9988"


def test_clear_alerts() -> None:
    store = TelemetryStore(clock=_Clock())
    alert = store.add_alert(Severity.CRITICAL, DEVICE, "boom")
    assert alert is not None
    assert store.clear_alert(alert.id)
    store.add_alert(Severity.CRITICAL, DEVICE, "again")
    store.clear_alerts()
    assert store.list_alerts() == ()

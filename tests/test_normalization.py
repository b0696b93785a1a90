from __future__ import annotations

import json
import math
from datetime import UTC, datetime

import pytest

from pyfabrix.ingestion.messages import build_events, decode_message
from pyfabrix.ingestion.normalize import (
    normalize_timestamp_ms,
    prune_patch,
    safe_bool,
    safe_float,
)
from pyfabrix.ingestion.payloads import (
    AirPurifierPayload,
    DiscoveryPayload,
    EnvironmentPayload,
    RobotBatteryPayload,
    RobotLocationPayload,
    RobotStatusPayload,
    RobotTaskPayload,
)
from pyfabrix.ingestion.topics import TopicKind, parse_topic, robot_topics
from pyfabrix.state.events import EventKind, EventSource

RECEIVED = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
RECEIVED_MS = int(RECEIVED.timestamp() * 1000)


def test_safe_float_rejects_sentinels() -> None:
    assert safe_float("21.5") == 21.5
    assert safe_float("--") is None
    assert safe_float("") is None
    assert safe_float(math.nan) is None
    assert safe_float(True) is None


def test_safe_bool_accepts_producer_spellings() -> None:
    assert safe_bool("ON") is True
    assert safe_bool("inactive") is False
    assert safe_bool(0) is False
    assert safe_bool("maybe") is None


def test_prune_patch_drops_empty_values_recursively() -> None:
    patch = {"a": 1, "b": "", "c": {"d": None, "e": "--"}, "f": [None, 2], "g": math.nan}
    assert prune_patch(patch) == {"a": 1, "f": [2]}


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (1_767_268_800, 1_767_268_800_000),
        (1_767_268_800_000, 1_767_268_800_000),
        ("2026-01-01T12:00:00Z", RECEIVED_MS),
        (RECEIVED, RECEIVED_MS),
        (0, None),
        ("soon", None),
        (None, None),
    ],
)
def test_normalize_timestamp_ms(value: object, expected: int | None) -> None:
    assert normalize_timestamp_ms(value) == expected


def test_environment_alias_precedence() -> None:
    payload = EnvironmentPayload.model_validate(
        {"temperature": 99, "ambient_temp": 22.5, "hum": 40, "pressure": "--", "atmospheric_pressure": 25}
    )
    assert payload.temperature == 22.5
    assert payload.humidity == 40
    assert payload.pressure == 25


def test_sentinel_does_not_shadow_lower_precedence_alias() -> None:
    payload = EnvironmentPayload.model_validate({"ambient_temp": "--", "temperature": 23})
    assert payload.temperature == 23


def test_air_purifier_aliases_and_bool_coercion() -> None:
    assert AirPurifierPayload.model_validate({"air_scrubber_status": "active"}).air_purifier == "ACTIVE"
    assert AirPurifierPayload.model_validate({"airPurifier": False}).air_purifier == "INACTIVE"


def test_robot_location_aliases_and_nested_data() -> None:
    payload = RobotLocationPayload.model_validate({"data": {"latitude": 37.4218, "lon": -122.084, "yaw": 90}})
    assert (payload.lat, payload.lng, payload.heading) == (37.4218, -122.084, 90)


def test_robot_status_state_aliases() -> None:
    payload = RobotStatusPayload.model_validate({"robot-status": "moving", "battery_pct": "55", "obstacleDetected": "true"})
    assert payload.state == "MOVING"
    assert payload.battery == 55
    assert payload.obstacle_detected is True


def test_robot_battery_value_alias() -> None:
    assert RobotBatteryPayload.model_validate({"value": 12}).battery == 12
    assert RobotBatteryPayload.model_validate({"level": 30, "battery": 31}).battery == 31


def test_robot_task_aliases() -> None:
    payload = RobotTaskPayload.model_validate(
        {"taskId": "T-9", "initiate location": "Cleanroom A", "source": "Storage", "destination": "Loading Bay", "status": "Pending"}
    )
    assert payload.task_id == "T-9"
    assert payload.source_name == "Cleanroom A"
    assert payload.destination_name == "Loading Bay"
    assert payload.phase == "Pending"


def test_discovery_accepts_single_id_and_objects() -> None:
    assert DiscoveryPayload.model_validate({"robots": "robot-1"}).robots == ["robot-1"]
    payload = DiscoveryPayload.model_validate({"robotIds": [{"id": "r1"}, {"robotId": "r2"}, "r1", ""]})
    assert payload.robots == ["r1", "r2"]


def test_parse_topic_routes() -> None:
    device = parse_topic("stream/device9988")
    robot = parse_topic("/topic/stream/device9988/robots/r1/location")
    task_state = parse_topic("state/device9988/robots/r1/tasks")

    assert device is not None and device.kind is TopicKind.DEVICE_STREAM
    assert robot is not None and (robot.kind, robot.robot_id) == (TopicKind.ROBOT_LOCATION, "r1")
    assert task_state is not None and task_state.kind is TopicKind.ROBOT_TASKS
    assert parse_topic("state/device9988/robots/r1/location") is None
    assert parse_topic("state/device9988/emergencyStop") is None
    assert parse_topic("other/device9988") is None


def test_robot_topics_cover_all_channels() -> None:
    topics = robot_topics("device9988", "r1")
    assert topics == (
        "stream/device9988/robots/r1/location",
        "stream/device9988/robots/r1/temperature",
        "stream/device9988/robots/r1/status",
        "stream/device9988/robots/r1/battery",
        "stream/device9988/robots/r1/tasks",
        "state/device9988/robots/r1/tasks",
    )


def test_decode_message_backfills_timestamp_and_device() -> None:
    message = decode_message("stream/device9988", b'{"temperature": 22}', RECEIVED)

    assert message.parsed
    assert message.body["timestamp"] == RECEIVED_MS
    assert message.body["deviceId"] == "device9988"


def test_decode_message_keeps_producer_timestamp() -> None:
    body = json.dumps({"temperature": 22, "timestamp": 1_767_268_000}).encode()
    message = decode_message("stream/device9988", body, RECEIVED)
    assert message.body["timestamp"] == 1_767_268_000


def test_decode_message_wraps_scalars_and_arrays() -> None:
    assert decode_message("stream/device9988", b"42", RECEIVED).body["value"] == 42
    assert decode_message("stream/device9988", b"[1, 2]", RECEIVED).body["value"] == [1, 2]


def test_malformed_message_becomes_unparsed_event() -> None:
    message = decode_message("stream/device9988/robots/r1/status", b"{oops", RECEIVED)
    events = build_events(message)

    assert not message.parsed
    assert message.body["raw"] == "{oops"
    assert message.body["timestamp"] == RECEIVED_MS
    assert [event.kind for event in events] == [EventKind.UNPARSED]
    assert events[0].robot_id == "r1"


@pytest.mark.parametrize("topic", ["stream/device9988", "state/device9988"])
def test_body_failing_validation_is_retained_as_unparsed(topic: str) -> None:
    message = decode_message(topic, {"temperature": 21, "ac_power": "on", "raw": "x"}, RECEIVED)
    events = build_events(message)

    assert message.parsed
    assert [event.kind for event in events] == [EventKind.UNPARSED]
    assert events[0].data["raw"] == "x"
    assert events[0].data["temperature"] == 21
    assert events[0].payload_timestamp == RECEIVED_MS


def test_device_stream_builds_environment_and_summary_events() -> None:
    message = decode_message(
        "stream/device9988",
        {"ambient_temp": 23.1, "humidity": 45, "tasks": {"active": 2}, "robots": ["r1"]},
        RECEIVED,
    )
    events = build_events(message)
    kinds = [event.kind for event in events]

    assert kinds == [EventKind.ENVIRONMENT, EventKind.TASK_SUMMARY, EventKind.ROBOT_DISCOVERY]
    assert events[0].data == {"temperature": 23.1, "humidity": 45}
    assert events[0].source is EventSource.STREAM
    assert events[1].data["tasks"] == {"active": 2}
    assert events[2].data == {"robots": ["r1"]}


def test_device_state_builds_control_events() -> None:
    message = decode_message("state/device9988", {"ac_power": "on", "active_alert": "Door open"}, RECEIVED)
    events = {event.kind: event for event in build_events(message)}

    assert events[EventKind.AC].data == {"ac_power": "ON"}
    assert events[EventKind.STATUS].data == {"active_alert": "Door open"}
    assert EventKind.AIR_PURIFIER not in events
    assert all(event.source is EventSource.STATE for event in events.values())


def test_foreign_topic_builds_nothing() -> None:
    assert build_events(decode_message("other/thing", b"{}", RECEIVED)) == []

"""Topic naming and routing.

Consumed topics::

    stream/{deviceId}
    state/{deviceId}
    stream/{deviceId}/robots/{robotId}/{location|temperature|status|battery|tasks}
    state/{deviceId}/robots/{robotId}/tasks

Commands are published to ``state/{deviceId}/{commandType}``. A leading
``/topic/`` (STOMP-style destination) is tolerated on input.
"""

from __future__ import annotations

import dataclasses
from enum import StrEnum

from pyfabrix._constants import STATE_PREFIX, STREAM_PREFIX


class TopicKind(StrEnum):
    DEVICE_STREAM = "device-stream"
    DEVICE_STATE = "device-state"
    ROBOT_LOCATION = "location"
    ROBOT_TEMPERATURE = "temperature"
    ROBOT_STATUS = "status"
    ROBOT_BATTERY = "battery"
    ROBOT_TASKS = "tasks"


ROBOT_STREAM_CHANNELS: tuple[TopicKind, ...] = (
    TopicKind.ROBOT_LOCATION,
    TopicKind.ROBOT_TEMPERATURE,
    TopicKind.ROBOT_STATUS,
    TopicKind.ROBOT_BATTERY,
    TopicKind.ROBOT_TASKS,
)

_CHANNEL_ALIASES: dict[str, TopicKind] = {
    "location": TopicKind.ROBOT_LOCATION,
    "temperature": TopicKind.ROBOT_TEMPERATURE,
    "env": TopicKind.ROBOT_TEMPERATURE,
    "status": TopicKind.ROBOT_STATUS,
    "battery": TopicKind.ROBOT_BATTERY,
    "tasks": TopicKind.ROBOT_TASKS,
    "task": TopicKind.ROBOT_TASKS,
}


@dataclasses.dataclass(frozen=True)
class TopicRoute:
    kind: TopicKind
    prefix: str
    device_id: str
    robot_id: str | None = None


def normalize_topic(topic: str) -> str:
    text = topic.strip().strip("/")
    if text.startswith("topic/"):
        text = text[len("topic/") :]
    return text


def parse_topic(topic: str) -> TopicRoute | None:
    """Route a topic to its device/robot target; ``None`` for foreign topics."""
    parts = normalize_topic(topic).split("/")
    if not parts or parts[0] not in (STREAM_PREFIX, STATE_PREFIX) or any(not part for part in parts):
        return None
    prefix = parts[0]

    if len(parts) == 2:
        kind = TopicKind.DEVICE_STREAM if prefix == STREAM_PREFIX else TopicKind.DEVICE_STATE
        return TopicRoute(kind=kind, prefix=prefix, device_id=parts[1])

    if len(parts) == 5 and parts[2] == "robots":
        channel = _CHANNEL_ALIASES.get(parts[4].lower())
        if channel is None:
            return None
        if prefix == STATE_PREFIX and channel is not TopicKind.ROBOT_TASKS:
            return None
        return TopicRoute(kind=channel, prefix=prefix, device_id=parts[1], robot_id=parts[3])

    return None


def device_topics(device_id: str) -> tuple[str, ...]:
    return (f"{STREAM_PREFIX}/{device_id}", f"{STATE_PREFIX}/{device_id}")


def robot_topics(device_id: str, robot_id: str) -> tuple[str, ...]:
    streams = tuple(f"{STREAM_PREFIX}/{device_id}/robots/{robot_id}/{channel}" for channel in ROBOT_STREAM_CHANNELS)
    return (*streams, f"{STATE_PREFIX}/{device_id}/robots/{robot_id}/{TopicKind.ROBOT_TASKS}")


def command_topic(device_id: str, command_type: str) -> str:
    return f"{STATE_PREFIX}/{device_id}/{command_type}"

"""Message decoding and event building.

This module translates raw broker messages into normalized state-store
events. Decoding never raises: a body that cannot be parsed becomes an
``unparsed`` wrapper carrying the raw text and a synthesized timestamp.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from pyfabrix._constants import STREAM_PREFIX
from pyfabrix._redact import redact_for_log
from pyfabrix.exceptions import FabrixParseError
from pyfabrix.ingestion.normalize import datetime_to_ms, normalize_timestamp_ms, prune_patch
from pyfabrix.ingestion.payloads import (
    AcPayload,
    AirPurifierPayload,
    DeviceStatusPayload,
    DiscoveryPayload,
    EnvironmentPayload,
    RobotBatteryPayload,
    RobotLocationPayload,
    RobotStatusPayload,
    RobotTaskPayload,
    RobotTemperaturePayload,
)
from pyfabrix.ingestion.topics import TopicKind, TopicRoute, parse_topic
from pyfabrix.models._base import FabrixPayload
from pyfabrix.state.events import EventKind, EventSource, TelemetryEvent

_logger = logging.getLogger(__name__)

_TASK_SUMMARY_KEYS = ("tasks", "task_summary")
_DISCOVERY_KEYS = ("robots", "robotIds", "robot_ids")


@dataclasses.dataclass(frozen=True)
class DecodedMessage:
    """A broker message after JSON decoding and backfill."""

    topic: str
    route: TopicRoute | None
    body: dict[str, Any]
    received_at: datetime
    parsed: bool = True


def _decode_body(topic: str, payload: bytes | str | dict[str, Any] | list[Any]) -> dict[str, Any]:
    if isinstance(payload, dict):
        return dict(payload)
    if isinstance(payload, list):
        return {"value": payload}
    if isinstance(payload, bytes | bytearray):
        try:
            text = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FabrixParseError("payload is not valid UTF-8", topic=topic) from exc
    else:
        text = payload
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FabrixParseError(f"payload is not valid JSON: {exc.msg}", topic=topic) from exc
    if isinstance(value, dict):
        return value
    return {"value": value}


def _raw_text(payload: Any) -> str:
    if isinstance(payload, bytes | bytearray):
        return bytes(payload).decode("utf-8", errors="replace")
    return str(payload)


def decode_message(topic: str, payload: bytes | str | dict[str, Any] | list[Any], received_at: datetime) -> DecodedMessage:
    """Decode a broker message body and backfill ``timestamp``/``deviceId``.

    Scalars and arrays are wrapped as ``{"value": ...}``. Malformed bodies
    yield ``parsed=False`` and a ``{"raw": ..., "timestamp": ...}`` body.
    """
    route = parse_topic(topic)
    received_ms = datetime_to_ms(received_at)
    try:
        body = _decode_body(topic, payload)
        parsed = True
    except FabrixParseError as exc:
        _logger.warning("Unparsable message on %s: %s", topic, exc)
        body = {"raw": _raw_text(payload)}
        parsed = False

    if normalize_timestamp_ms(body.get("timestamp")) is None:
        body["timestamp"] = received_ms
    if route is not None:
        body.setdefault("deviceId", route.device_id)

    return DecodedMessage(topic=topic, route=route, body=body, received_at=received_at, parsed=parsed)


def _patch(model: FabrixPayload) -> dict[str, Any]:
    patch = prune_patch(model.model_dump(exclude={"raw", "timestamp"}))
    return patch if isinstance(patch, dict) else {}


def _parse(model_cls: type[FabrixPayload], body: dict[str, Any], topic: str) -> FabrixPayload | None:
    try:
        return model_cls.model_validate(body)
    except ValidationError as exc:
        _logger.warning("Could not validate %s on %s (%d errors)", model_cls.__name__, topic, exc.error_count())
        _logger.debug("Validation errors: %s", exc.errors(include_input=False))
        return None


class _EventFactory:
    def __init__(self, message: DecodedMessage, route: TopicRoute, source: EventSource) -> None:
        self.message = message
        self.route = route
        self.source = source
        self.events: list[TelemetryEvent] = []
        self._rejected = False

    def add(self, kind: EventKind, data: dict[str, Any], *, payload_timestamp: int | None = None) -> None:
        self.events.append(
            TelemetryEvent(
                device_id=self.route.device_id,
                robot_id=self.route.robot_id if kind.targets_robot or kind is EventKind.UNPARSED else None,
                kind=kind,
                source=self.source,
                topic=self.message.topic,
                observed_at=self.message.received_at,
                payload_timestamp=payload_timestamp,
                data=data,
                raw=self.message.body,
            )
        )

    def add_model(self, kind: EventKind, model_cls: type[FabrixPayload]) -> FabrixPayload | None:
        model = _parse(model_cls, self.message.body, self.message.topic)
        if model is None:
            self.add_unparsed()
            return None
        patch = _patch(model)
        if patch:
            self.add(kind, patch, payload_timestamp=model.timestamp)
        return model

    def add_unparsed(self) -> None:
        """Retain the raw body, at most once per message."""
        if self._rejected:
            return
        self._rejected = True
        body = self.message.body
        self.add(EventKind.UNPARSED, dict(body), payload_timestamp=normalize_timestamp_ms(body.get("timestamp")))


def _device_stream(factory: _EventFactory) -> None:
    body = factory.message.body
    factory.add_model(EventKind.ENVIRONMENT, EnvironmentPayload)
    if "air_scrubber_status" in body or "air_purifier" in body:
        factory.add_model(EventKind.AIR_PURIFIER, AirPurifierPayload)
    if any(body.get(key) is not None for key in _TASK_SUMMARY_KEYS):
        summary = prune_patch({key: value for key, value in body.items() if key not in ("deviceId", "timestamp")})
        factory.add(EventKind.TASK_SUMMARY, summary, payload_timestamp=normalize_timestamp_ms(body.get("timestamp")))
    _discovery(factory)


def _device_state(factory: _EventFactory) -> None:
    factory.add_model(EventKind.AC, AcPayload)
    factory.add_model(EventKind.AIR_PURIFIER, AirPurifierPayload)
    factory.add_model(EventKind.STATUS, DeviceStatusPayload)
    _discovery(factory)


def _discovery(factory: _EventFactory) -> None:
    if any(key in factory.message.body for key in _DISCOVERY_KEYS):
        factory.add_model(EventKind.ROBOT_DISCOVERY, DiscoveryPayload)


def _robot(kind: EventKind, model_cls: type[FabrixPayload]) -> Callable[[_EventFactory], None]:
    def build(factory: _EventFactory) -> None:
        factory.add_model(kind, model_cls)

    return build


_BUILDERS: dict[TopicKind, Callable[[_EventFactory], None]] = {
    TopicKind.DEVICE_STREAM: _device_stream,
    TopicKind.DEVICE_STATE: _device_state,
    TopicKind.ROBOT_LOCATION: _robot(EventKind.ROBOT_LOCATION, RobotLocationPayload),
    TopicKind.ROBOT_TEMPERATURE: _robot(EventKind.ROBOT_TEMPERATURE, RobotTemperaturePayload),
    TopicKind.ROBOT_STATUS: _robot(EventKind.ROBOT_STATUS, RobotStatusPayload),
    TopicKind.ROBOT_BATTERY: _robot(EventKind.ROBOT_BATTERY, RobotBatteryPayload),
    TopicKind.ROBOT_TASKS: _robot(EventKind.ROBOT_TASK, RobotTaskPayload),
}


def build_events(message: DecodedMessage, source: EventSource | None = None) -> list[TelemetryEvent]:
    """Build state-store events from a decoded message.

    One message may yield several events (a ``state/{deviceId}`` body can
    carry AC, purifier and status fields at once). Messages on foreign
    topics yield nothing.
    """
    route = message.route
    if route is None:
        _logger.debug("Ignoring message on unrouted topic %s", message.topic)
        return []
    if source is None:
        source = EventSource.STREAM if route.prefix == STREAM_PREFIX else EventSource.STATE

    factory = _EventFactory(message, route, source)
    if not message.parsed:
        factory.add_unparsed()
        return factory.events

    _BUILDERS[route.kind](factory)
    if not factory.events:
        _logger.debug("No telemetry in message on %s: %s", message.topic, redact_for_log(message.body))
    return factory.events

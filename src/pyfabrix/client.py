"""High-level async client for the facility monitoring backend."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pyfabrix._api import state as _state_api
from pyfabrix._mqtt import MqttTransport, Transport
from pyfabrix._transport import HttpTransport, RestTransport
from pyfabrix.config import FabrixConfig
from pyfabrix.exceptions import FabrixConfigError, FabrixTransportError, FabrixValidationError
from pyfabrix.ingestion.pipeline import IngestionPipeline
from pyfabrix.ingestion.topics import command_topic, device_topics, robot_topics
from pyfabrix.models.task import Task, TaskPhase
from pyfabrix.settings import JsonFileSettingsBackend, SettingsRepository
from pyfabrix.spatial.progress import generate_task_id, resolve_endpoint
from pyfabrix.state.events import EventKind, EventSource, TelemetryEvent
from pyfabrix.state.store import TelemetryStore
from pyfabrix.state.tasks import TaskTimings
from pyfabrix.thresholds import ThresholdResolver

_logger = logging.getLogger(__name__)

TICK_INTERVAL_S = 1.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FabrixClient:
    """Async client that keeps a :class:`TelemetryStore` in sync with the broker.

    Usage::

        async with FabrixClient(config) as client:
            await client.select_device("device9988")
            robots = client.store.get_robots("device9988")

    Only one device is followed at a time. Switching devices closes every
    topic of the previous device (and its robots) before the new device's
    topics are opened.
    """

    def __init__(
        self,
        config: FabrixConfig | None = None,
        *,
        transport: Transport | None = None,
        http_transport: HttpTransport | None = None,
        settings: SettingsRepository | None = None,
        clock: Callable[[], datetime] = _utcnow,
        tick_interval: float | None = TICK_INTERVAL_S,
    ) -> None:
        self._config = config or FabrixConfig()
        if settings is None:
            backend = JsonFileSettingsBackend(self._config.settings_path) if self._config.settings_path else None
            settings = SettingsRepository(backend)
        self._settings = settings
        self._thresholds = ThresholdResolver(self._settings.thresholds)
        self._clock = clock
        self._store = TelemetryStore(
            devices=self._config.devices,
            thresholds=self._thresholds,
            clock=clock,
            task_timings=TaskTimings.from_config(self._config),
            on_robot_discovered=self._on_robot_discovered,
            on_robot_evicted=self._on_robot_evicted,
        )
        self._pipeline = IngestionPipeline(self._store, capacity=self._config.channel_capacity, clock=clock)
        self._transport: Transport = transport or MqttTransport(self._config)
        self._owns_http = http_transport is None
        self._http: HttpTransport = http_transport or RestTransport(self._config)
        self._tick_interval = tick_interval

        self._selected: str | None = None
        self._subscriptions: dict[str, Callable[[], None]] = {}
        self._robot_topics: dict[str, tuple[str, tuple[str, ...]]] = {}
        self._history_task: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FabrixClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self, device_id: str | None = None) -> None:
        """Connect and follow ``device_id`` (or the persisted/first roster device).

        A failed broker handshake is logged, not raised: the transport keeps
        retrying and :attr:`is_connected` reflects the outcome.
        """
        self._pipeline.start()
        if self._tick_interval and (self._tick_task is None or self._tick_task.done()):
            self._tick_task = asyncio.get_running_loop().create_task(
                self._tick_loop(self._tick_interval), name="pyfabrix-tick"
            )
        try:
            await self._transport.connect()
        except FabrixTransportError as exc:
            _logger.warning("Broker connection not established yet: %s", exc)

        target = device_id or self._settings.selected_device_id()
        if target is not None and not any(d.id == target for d in self._config.devices):
            _logger.warning("Persisted device %s is not in the roster; ignoring it", target)
            target = None
        if target is None and self._config.devices:
            target = self._config.devices[0].id
        if target is not None:
            await self.select_device(target)

    async def close(self) -> None:
        for task in (self._history_task, self._tick_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._history_task = None
        self._tick_task = None
        self._unsubscribe_all()
        self._selected = None
        await self._pipeline.stop()
        await self._transport.disconnect()
        if self._owns_http and isinstance(self._http, RestTransport):
            await self._http.close()

    async def _tick_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self._store.tick()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> FabrixConfig:
        return self._config

    @property
    def store(self) -> TelemetryStore:
        return self._store

    @property
    def settings(self) -> SettingsRepository:
        return self._settings

    @property
    def thresholds(self) -> ThresholdResolver:
        return self._thresholds

    @property
    def pipeline(self) -> IngestionPipeline:
        return self._pipeline

    @property
    def selected_device_id(self) -> str | None:
        return self._selected

    @property
    def is_connected(self) -> bool:
        return self._transport.is_connected

    @property
    def last_message_at(self) -> datetime | None:
        return self._pipeline.last_message_at

    def subscribed_topics(self) -> tuple[str, ...]:
        return tuple(self._subscriptions)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def _on_message(self, topic: str, payload: bytes) -> None:
        self._pipeline.submit(topic, payload)

    def _subscribe(self, topic: str) -> None:
        if topic in self._subscriptions:
            return
        self._pipeline.open(topic)
        self._subscriptions[topic] = self._transport.subscribe(topic, self._on_message)

    def _unsubscribe(self, topic: str) -> None:
        unsubscribe = self._subscriptions.pop(topic, None)
        if unsubscribe is None:
            return
        unsubscribe()
        self._pipeline.close(topic)

    def _unsubscribe_all(self) -> None:
        for topic in list(self._subscriptions):
            self._unsubscribe(topic)
        self._robot_topics.clear()

    def _subscribe_robot(self, device_id: str, robot_id: str) -> None:
        topics = robot_topics(device_id, robot_id)
        for topic in topics:
            self._subscribe(topic)
        self._robot_topics[robot_id] = (device_id, topics)

    def _on_robot_discovered(self, device_id: str, robot_id: str) -> None:
        previous = self._robot_topics.get(robot_id)
        if previous is not None and previous[0] != device_id:
            for topic in previous[1]:
                self._unsubscribe(topic)
            del self._robot_topics[robot_id]
        if device_id == self._selected and robot_id not in self._robot_topics:
            _logger.info("Subscribing robot %s on %s", robot_id, device_id)
            self._subscribe_robot(device_id, robot_id)

    def _on_robot_evicted(self, device_id: str, robot_id: str) -> None:
        tracked = self._robot_topics.pop(robot_id, None)
        if tracked is None:
            return
        _logger.info("Dropping topics of evicted robot %s on %s", robot_id, device_id)
        for topic in tracked[1]:
            self._unsubscribe(topic)

    async def select_device(self, device_id: str) -> None:
        """Follow ``device_id``; raises :class:`FabrixConfigError` for unknown ids.

        All topics of the previous device and its robots are closed first,
        discarding anything still queued on them. Historical state for the
        new device is then fetched in the background.
        """
        self._config.device(device_id)
        if device_id == self._selected:
            return

        previous = self._selected
        if self._history_task is not None and not self._history_task.done():
            self._history_task.cancel()
        self._unsubscribe_all()
        self._selected = device_id
        _logger.info("Selected device %s (was %s)", device_id, previous)

        for topic in device_topics(device_id):
            self._subscribe(topic)
        for robot_id in self._store.get_robots(device_id):
            self._subscribe_robot(device_id, robot_id)
        self._settings.set_selected_device_id(device_id)

        self._history_task = asyncio.get_running_loop().create_task(
            self.load_history(device_id), name=f"pyfabrix-history-{device_id}"
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def load_history(self, device_id: str, history_range: str | None = None) -> int:
        """Fetch and apply historical state; returns the number of events applied.

        Failures are logged and leave live data untouched.
        """
        applied = 0
        window = history_range or self._config.history_range
        fetches: tuple[tuple[str, Callable[[], Awaitable[list[TelemetryEvent]]]], ...] = (
            ("state details", lambda: _state_api.fetch_state_details(self._http, device_id, now=self._clock())),
            (
                "stream history",
                lambda: _state_api.fetch_stream_data(self._http, device_id, history_range=window, now=self._clock()),
            ),
        )
        for label, fetch in fetches:
            try:
                events = await fetch()
            except FabrixTransportError as exc:
                _logger.warning("Could not load %s for %s: %s", label, device_id, exc)
                continue
            if device_id != self._selected:
                _logger.debug("Discarding %s for %s; device no longer selected", label, device_id)
                continue
            for event in events:
                self._store.apply(event)
                applied += 1
        return applied

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _target(self, device_id: str | None) -> str:
        target = device_id or self._selected
        if target is None:
            raise FabrixConfigError("no device selected")
        self._config.device(target)
        return target

    async def _command(self, device_id: str | None, command_type: str, payload: Mapping[str, Any]) -> str:
        target = self._target(device_id)
        destination = command_topic(target, command_type)
        _logger.info("Sending %s command to %s", command_type, target)
        await self._transport.publish(destination, payload)
        return target

    async def emergency_stop(self, active: bool = True, *, device_id: str | None = None) -> None:
        """Trigger (or clear, with ``active=False``) the emergency stop."""
        await self._command(device_id, "emergencyStop", {"emergency_stop": bool(active)})

    async def set_ac(self, on: bool, *, device_id: str | None = None) -> None:
        await self._command(device_id, "ac", {"ac_power": "ON" if on else "OFF"})

    async def set_air_purifier(self, active: bool, *, device_id: str | None = None) -> None:
        await self._command(device_id, "air_purifier", {"air_purifier": "ACTIVE" if active else "INACTIVE"})

    async def assign_task(
        self,
        robot_id: str,
        source: str,
        destination: str,
        *,
        device_id: str | None = None,
        task_type: str = "DELIVERY",
        source_lat: float | None = None,
        source_lng: float | None = None,
        destination_lat: float | None = None,
        destination_lng: float | None = None,
    ) -> Task:
        """Publish a delivery task and track it locally as ``ASSIGNED``.

        Room names resolve to room centers unless explicit coordinates are
        given. Raises :class:`FabrixValidationError` when a waypoint cannot
        be resolved and :class:`FabrixCommandError` when the publish fails.
        """
        target = self._target(device_id)
        errors: dict[str, str] = {}
        if not robot_id or not robot_id.strip():
            errors["robot_id"] = "required"
        source_point = resolve_endpoint(source, source_lat, source_lng)
        if source_point is None:
            errors["source"] = f"unknown location {source!r}"
        destination_point = resolve_endpoint(destination, destination_lat, destination_lng)
        if destination_point is None:
            errors["destination"] = f"unknown location {destination!r}"
        if errors or source_point is None or destination_point is None:
            raise FabrixValidationError(errors)

        task_id = generate_task_id(self._clock())
        payload = {
            "robotId": robot_id,
            "task_type": task_type,
            "task_id": task_id,
            "status": TaskPhase.ASSIGNED.value,
            "initiate location": source,
            "destination": destination,
            "source_lat": source_point.lat,
            "source_lng": source_point.lng,
            "destination_lat": destination_point.lat,
            "destination_lng": destination_point.lng,
        }
        await self._command(target, "task", payload)

        self._store.apply(
            TelemetryEvent(
                device_id=target,
                robot_id=robot_id,
                kind=EventKind.ROBOT_TASK,
                source=EventSource.LOCAL,
                topic=command_topic(target, "task"),
                observed_at=self._clock(),
                data={
                    "task_id": task_id,
                    "task_type": task_type,
                    "phase": TaskPhase.ASSIGNED.value,
                    "source_name": source,
                    "destination_name": destination,
                    "source_lat": source_point.lat,
                    "source_lng": source_point.lng,
                    "destination_lat": destination_point.lat,
                    "destination_lng": destination_point.lng,
                },
                raw=payload,
            )
        )
        robot = self._store.get_robot(target, robot_id)
        if robot is None or robot.task is None:
            raise FabrixValidationError({"robot_id": f"robot {robot_id!r} could not be tracked"})
        return robot.task

    # ------------------------------------------------------------------
    # Warm start
    # ------------------------------------------------------------------

    def save_snapshot(self) -> None:
        self._settings.save_snapshot(self._store.snapshot())

    def restore_snapshot(self) -> int:
        """Load the persisted snapshot into the store; returns records restored."""
        snapshot = self._settings.load_snapshot()
        if snapshot is None:
            return 0
        return self._store.restore(snapshot)

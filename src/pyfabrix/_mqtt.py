"""Internal MQTT transport.

A threaded paho-mqtt client whose callbacks are marshalled onto an asyncio
loop. The transport remembers every active topic and re-subscribes all of
them whenever a connection is (re-)established.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable, Mapping
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from pyfabrix._redact import redact_for_log
from pyfabrix.config import FabrixConfig
from pyfabrix.exceptions import FabrixCommandError, FabrixTransportError

MessageHandler = Callable[[str, bytes], None]
ConnectionListener = Callable[[bool], None]


class Transport(Protocol):
    """Structural transport interface used by :class:`~pyfabrix.client.FabrixClient`.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (:class:`MqttTransport`) concrete.
    """

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def subscribe(self, topic: str, handler: MessageHandler) -> Callable[[], None]: ...

    def unsubscribe(self, topic: str) -> None: ...

    async def publish(self, destination: str, payload: Mapping[str, Any]) -> None: ...


def _default_client_factory(config: FabrixConfig) -> mqtt.Client:
    client_id = config.client_id or f"pyfabrix-{secrets.token_hex(6)}"
    return mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


class MqttTransport:
    """Threaded paho-mqtt transport that delivers messages onto an asyncio loop.

    Parameters
    ----------
    config
        Broker host, credentials, keepalive, timeouts and reconnect delay.
    client_factory
        Builds the underlying paho client; tests inject a fake here.
    on_connection_change
        Called on the loop thread with ``True``/``False`` whenever the
        connection state flips.
    """

    def __init__(
        self,
        config: FabrixConfig,
        *,
        client_factory: Callable[[FabrixConfig], Any] = _default_client_factory,
        on_connection_change: ConnectionListener | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory
        self._on_connection_change = on_connection_change
        self._logger = logger or logging.getLogger(__name__)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: Any = None
        self._connected = False
        self._handshake: asyncio.Future[None] | None = None
        self._handlers: dict[str, MessageHandler] = {}

    @property
    def is_connected(self) -> bool:
        """Whether the broker handshake has completed and not been lost since."""
        return self._connected

    def topics(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the network loop and wait for the broker handshake.

        Raises :class:`FabrixTransportError` on timeout or when the broker
        refuses the connection. The network loop keeps retrying in the
        background with a fixed delay either way.
        """
        loop = asyncio.get_running_loop()
        self._loop = loop
        if self._client is None:
            self._client = self._build_client()
            self._handshake = loop.create_future()
            self._client.connect_async(
                self._config.broker_host,
                self._config.broker_port,
                keepalive=self._config.keepalive,
            )
            self._client.loop_start()
            self._logger.info(
                "MQTT connecting host=%s port=%s", self._config.broker_host, self._config.broker_port
            )
        elif self._connected:
            return
        elif self._handshake is None or self._handshake.done():
            self._handshake = loop.create_future()

        handshake = self._handshake
        assert handshake is not None
        try:
            await asyncio.wait_for(asyncio.shield(handshake), timeout=self._config.connect_timeout)
        except TimeoutError as exc:
            raise FabrixTransportError(
                f"MQTT handshake timed out after {self._config.connect_timeout:g}s",
                endpoint=f"{self._config.broker_host}:{self._config.broker_port}",
            ) from exc

    def _build_client(self) -> Any:
        client = self._client_factory(self._config)
        client.enable_logger(self._logger)
        if self._config.username or self._config.token:
            client.username_pw_set(self._config.username or "", self._config.token)
        if self._config.use_tls:
            client.tls_set()
        delay = max(1, int(self._config.reconnect_delay))
        client.reconnect_delay_set(min_delay=delay, max_delay=delay)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    async def disconnect(self) -> None:
        """Stop the network loop and forget the client; topics are kept."""
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self._set_connected(False)
            if self._handshake is not None and not self._handshake.done():
                self._handshake.cancel()
            self._handshake = None
            self._logger.info("MQTT network loop stopped")

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _on_connect(self, client: Any, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
        if reason_code.value != 0:
            self._logger.warning("MQTT connect refused: %s", reason_code)
            self._call_soon(self._fail_handshake, str(reason_code))
            return
        self._call_soon(self._complete_handshake, client)

    def _on_disconnect(self, _client: Any, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
        self._logger.info("MQTT disconnected: %s", reason_code)
        self._call_soon(self._set_connected, False)

    def _on_message(self, _client: Any, _userdata: Any, msg: Any) -> None:
        self._call_soon(self._dispatch, msg.topic, msg.payload)

    # ------------------------------------------------------------------
    # Loop-thread side
    # ------------------------------------------------------------------

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        if self._on_connection_change is not None:
            try:
                self._on_connection_change(connected)
            except Exception:
                self._logger.debug("Connection listener failed", exc_info=True)

    def _complete_handshake(self, client: Any) -> None:
        # Loop thread only: the topic snapshot and the connected flag change
        # together, so subscribe() either lands in the snapshot or sees the flag.
        if client is not self._client:
            return
        topics = tuple(self._handlers)
        self._logger.info("MQTT connected; subscribing %d topics", len(topics))
        for topic in topics:
            client.subscribe(topic, qos=0)
        self._set_connected(True)
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(None)

    def _fail_handshake(self, reason: str) -> None:
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(FabrixTransportError(f"MQTT connect refused: {reason}"))

    def _dispatch(self, topic: str, payload: bytes) -> None:
        handler = self._handlers.get(topic)
        if handler is None:
            self._logger.debug("Dropping message on unsubscribed topic %s", topic)
            return
        try:
            handler(topic, payload)
        except Exception:
            self._logger.warning("Handler for %s failed", topic, exc_info=True)

    # ------------------------------------------------------------------
    # Subscriptions / publishing
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, handler: MessageHandler) -> Callable[[], None]:
        """Subscribe ``topic`` (idempotent); returns a callable that unsubscribes it."""
        if topic not in self._handlers:
            self._handlers[topic] = handler
            if self._client is not None and self._connected:
                self._client.subscribe(topic, qos=0)
            self._logger.debug("Subscribed %s", topic)

        def _unsubscribe() -> None:
            self.unsubscribe(topic)

        return _unsubscribe

    def unsubscribe(self, topic: str) -> None:
        if self._handlers.pop(topic, None) is None:
            return
        if self._client is not None and self._connected:
            self._client.unsubscribe(topic)
        self._logger.debug("Unsubscribed %s", topic)

    async def publish(self, destination: str, payload: Mapping[str, Any]) -> None:
        """Publish a JSON command and wait for the broker to accept it.

        Raises :class:`FabrixCommandError` when offline or when the publish
        is not acknowledged in time. Commands are never retried.
        """
        client = self._client
        if client is None or not self._connected:
            raise FabrixCommandError("not connected to the broker", destination=destination)
        body = json.dumps(dict(payload), separators=(",", ":"))
        self._logger.debug("Publishing to %s: %s", destination, redact_for_log(dict(payload)))
        info = client.publish(destination, body, qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise FabrixCommandError(
                f"publish failed: {mqtt.error_string(info.rc)}",
                destination=destination,
            )
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, info.wait_for_publish, self._config.connect_timeout)
        except (RuntimeError, ValueError) as exc:
            raise FabrixCommandError(f"publish failed: {exc}", destination=destination) from exc
        if not info.is_published():
            raise FabrixCommandError("publish was not acknowledged", destination=destination)

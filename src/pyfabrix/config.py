"""Client configuration for pyfabrix."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyfabrix._constants import CHANNEL_CAPACITY, CONNECT_TIMEOUT_S, KEEPALIVE_S, RECONNECT_DELAY_S
from pyfabrix.exceptions import FabrixConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class DeviceDescriptor:
    """A fixed environmental/control unit serving one facility zone."""

    id: str
    name: str
    zone: str


DEFAULT_DEVICES: tuple[DeviceDescriptor, ...] = (
    DeviceDescriptor(id="device9988", name="Device 9988", zone="Cleanroom A"),
    DeviceDescriptor(id="device0011233", name="Device 0011233", zone="Cleanroom B"),
    DeviceDescriptor(id="deviceA72Q", name="Device A72Q", zone="Loading Bay"),
    DeviceDescriptor(id="deviceZX91", name="Device ZX91", zone="Storage"),
)


@dataclasses.dataclass(frozen=True)
class FabrixConfig:
    """Client configuration.

    Parameters
    ----------
    broker_host : str
        MQTT broker host name.
    broker_port : int
        MQTT broker port.
    username : str or None
        Broker user name. The access token doubles as broker password.
    token : str or None
        Access token obtained from the (external) login service. Sent as
        broker password and as ``X-Token`` header on REST calls.
    client_id : str or None
        MQTT client id. A random id is generated when omitted.
    use_tls : bool
        Wrap the broker connection in TLS.
    keepalive : int
        Broker heartbeat interval in seconds.
    connect_timeout : float
        Seconds to wait for the broker handshake before failing.
    reconnect_delay : float
        Fixed delay between automatic reconnect attempts.
    api_base_url : str
        Base URL of the REST service used for historical state.
    api_timeout : float
        REST request timeout in seconds.
    history_range : str
        Named window (``"1h"``, ``"24h"``...) fetched on device selection.
    settings_path : str or None
        JSON file used to persist settings. In-memory when omitted.
    task_start_after : float
        Seconds after assignment before a task is considered under way
        even without movement.
    pickup_dwell : float
        Seconds a robot may stay in PICKING_UP before the task advances.
    delivery_dwell : float
        Seconds a robot may stay in DELIVERING before the task completes.
    channel_capacity : int
        Per-topic queue bound; the oldest pending message is dropped on
        overflow.
    devices : tuple of DeviceDescriptor
        The fixed device roster.
    """

    broker_host: str = "localhost"
    broker_port: int = 1883
    username: str | None = None
    token: str | None = None
    client_id: str | None = None
    use_tls: bool = False
    keepalive: int = KEEPALIVE_S
    connect_timeout: float = CONNECT_TIMEOUT_S
    reconnect_delay: float = RECONNECT_DELAY_S
    api_base_url: str = "http://localhost:8080"
    api_timeout: float = 15.0
    history_range: str = "24h"
    settings_path: str | None = None
    task_start_after: float = 2.0
    pickup_dwell: float = 10.0
    delivery_dwell: float = 10.0
    channel_capacity: int = CHANNEL_CAPACITY
    devices: tuple[DeviceDescriptor, ...] = DEFAULT_DEVICES

    def device(self, device_id: str) -> DeviceDescriptor:
        """Return the roster entry for *device_id*."""
        for descriptor in self.devices:
            if descriptor.id == device_id:
                return descriptor
        raise FabrixConfigError(f"unknown device id {device_id!r}")

    @classmethod
    def from_env(cls, **overrides: Any) -> FabrixConfig:
        """Create configuration from ``FABRIX_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "FABRIX_BROKER_HOST": "broker_host",
            "FABRIX_USERNAME": "username",
            "FABRIX_TOKEN": "token",
            "FABRIX_CLIENT_ID": "client_id",
            "FABRIX_API_BASE_URL": "api_base_url",
            "FABRIX_HISTORY_RANGE": "history_range",
            "FABRIX_SETTINGS_PATH": "settings_path",
        }
        _ENV_INT_MAP = {
            "FABRIX_BROKER_PORT": "broker_port",
            "FABRIX_KEEPALIVE": "keepalive",
            "FABRIX_CHANNEL_CAPACITY": "channel_capacity",
        }
        _ENV_FLOAT_MAP = {
            "FABRIX_CONNECT_TIMEOUT": "connect_timeout",
            "FABRIX_RECONNECT_DELAY": "reconnect_delay",
            "FABRIX_API_TIMEOUT": "api_timeout",
            "FABRIX_TASK_START_AFTER": "task_start_after",
            "FABRIX_PICKUP_DWELL": "pickup_dwell",
            "FABRIX_DELIVERY_DWELL": "delivery_dwell",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val
        try:
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)
        except ValueError as exc:
            raise FabrixConfigError(f"invalid numeric environment value: {exc}") from exc

        if "use_tls" not in overrides:
            config_kwargs["use_tls"] = _env_bool(env.get("FABRIX_USE_TLS"), False)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)

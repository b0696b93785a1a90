"""Ingestion layer.

This package contains adapters that receive data from the Fabrix broker
(MQTT streams, HTTP history) and turn raw messages into normalized
telemetry events for the state store.
"""

__all__: list[str] = []

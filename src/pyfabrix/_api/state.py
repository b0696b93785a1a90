"""Historical state endpoints.

Endpoints:
  - /get-state-details/device (latest control state)
  - /get-stream-data/device (sensor history over a named window)

Responses are ``{"status": "Success", "data": [...]}``. Each record is
routed through the same decoding as live broker messages and emitted as
``history`` events, oldest first.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from pyfabrix._constants import STATE_PREFIX, STREAM_PREFIX
from pyfabrix._transport import HttpTransport
from pyfabrix.exceptions import FabrixTransportError
from pyfabrix.ingestion.messages import build_events, decode_message
from pyfabrix.ingestion.normalize import ms_to_datetime, normalize_timestamp_ms, safe_str
from pyfabrix.state.events import EventSource, TelemetryEvent

_logger = logging.getLogger(__name__)

STATE_DETAILS_ENDPOINT = "/get-state-details/device"
STREAM_DATA_ENDPOINT = "/get-stream-data/device"

DEFAULT_HISTORY_RANGE = "24h"
PAGE_SIZE = 100

HISTORY_RANGES: dict[str, timedelta] = {
    "1m": timedelta(minutes=1),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "12h": timedelta(hours=12),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def _iso(value: datetime) -> str:
    return value.astimezone(UTC).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def time_range(key: str | None, now: datetime | None = None) -> tuple[str, str]:
    """Return ``(start, end)`` ISO-8601 strings for a named window.

    Unknown keys fall back to ``24h``.
    """
    span = HISTORY_RANGES.get(key or "")
    if span is None:
        _logger.warning("Unknown history range %r; using %s", key, DEFAULT_HISTORY_RANGE)
        span = HISTORY_RANGES[DEFAULT_HISTORY_RANGE]
    end = now or datetime.now(UTC)
    return _iso(end - span), _iso(end)


def _records(endpoint: str, response: Mapping[str, Any]) -> list[dict[str, Any]]:
    status = safe_str(response.get("status"))
    if status is not None and status.lower() != "success":
        raise FabrixTransportError(f"{endpoint} returned status {status!r}", endpoint=endpoint)
    data = response.get("data")
    if data is None:
        return []
    if isinstance(data, Mapping):
        return [dict(data)]
    if isinstance(data, list):
        return [dict(item) for item in data if isinstance(item, Mapping)]
    _logger.warning("Unexpected data shape from %s: %s", endpoint, type(data).__name__)
    return []


def _record_body(record: Mapping[str, Any]) -> dict[str, Any]:
    """Unwrap ``{"payload": ...}`` envelopes; plain records are used as-is."""
    payload = record.get("payload")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            payload = None
    if isinstance(payload, Mapping):
        body = dict(payload)
        if "timestamp" not in body and record.get("timestamp") is not None:
            body["timestamp"] = record["timestamp"]
        return body
    return {key: value for key, value in record.items() if key not in ("topic", "payload")}


def _record_topic(record: Mapping[str, Any], prefix: str, device_id: str) -> str:
    """Keep robot-scoped topics from the record; everything else maps to the device topic."""
    topic = safe_str(record.get("topic"))
    if topic is not None:
        parts = topic.strip("/").split("/")
        if "robots" in parts:
            index = parts.index("robots")
            if len(parts) == index + 3:
                return "/".join((prefix, device_id, *parts[index:]))
    return f"{prefix}/{device_id}"


def records_to_events(
    records: Iterable[Mapping[str, Any]],
    *,
    prefix: str,
    device_id: str,
    now: datetime | None = None,
) -> list[TelemetryEvent]:
    """Convert REST records into ``history`` events, oldest record first."""
    fallback = now or datetime.now(UTC)
    decoded = []
    for record in records:
        body = _record_body(record)
        stamp = ms_to_datetime(normalize_timestamp_ms(body.get("timestamp"))) or fallback
        decoded.append(decode_message(_record_topic(record, prefix, device_id), body, stamp))
    decoded.sort(key=lambda message: message.received_at)

    events: list[TelemetryEvent] = []
    for message in decoded:
        events.extend(build_events(message, source=EventSource.HISTORY))
    return events


async def fetch_state_details(
    transport: HttpTransport,
    device_id: str,
    *,
    now: datetime | None = None,
) -> list[TelemetryEvent]:
    """Fetch the latest control state of a device."""
    response = await transport.post_json(STATE_DETAILS_ENDPOINT, {"deviceId": device_id})
    records = _records(STATE_DETAILS_ENDPOINT, response)
    _logger.debug("State details for %s: %d records", device_id, len(records))
    return records_to_events(records, prefix=STATE_PREFIX, device_id=device_id, now=now)


async def fetch_stream_data(
    transport: HttpTransport,
    device_id: str,
    *,
    history_range: str | None = DEFAULT_HISTORY_RANGE,
    now: datetime | None = None,
) -> list[TelemetryEvent]:
    """Fetch sensor history for a device over a named window (first page only)."""
    start, end = time_range(history_range, now)
    response = await transport.post_json(
        STREAM_DATA_ENDPOINT,
        {
            "deviceId": device_id,
            "startTime": start,
            "endTime": end,
            "pagination": "0",
            "pageSize": str(PAGE_SIZE),
        },
    )
    records = _records(STREAM_DATA_ENDPOINT, response)
    _logger.debug("Stream history for %s (%s): %d records", device_id, history_range, len(records))
    return records_to_events(records, prefix=STREAM_PREFIX, device_id=device_id, now=now)

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import pytest

from pyfabrix._api.state import (
    STATE_DETAILS_ENDPOINT,
    STREAM_DATA_ENDPOINT,
    fetch_state_details,
    fetch_stream_data,
    records_to_events,
    time_range,
)
from pyfabrix._transport import RestTransport
from pyfabrix.config import FabrixConfig
from pyfabrix.exceptions import FabrixConfigError, FabrixTransportError
from pyfabrix.state.events import EventKind, EventSource

NOW = datetime(2026, 1, 1, 12, 0, 0, 123456, tzinfo=UTC)


class _FakeHttp:
    def __init__(self, response: dict[str, Any]) -> None:
        self.response = response
        self.requests: list[tuple[str, dict[str, Any]]] = []

    async def post_json(self, endpoint: str, payload: Any) -> dict[str, Any]:
        self.requests.append((endpoint, dict(payload)))
        return self.response


def test_time_range_formats_utc_without_microseconds() -> None:
    assert time_range("6h", NOW) == ("2026-01-01T06:00:00Z", "2026-01-01T12:00:00Z")
    assert time_range("7d", NOW)[0] == "2025-12-25T12:00:00Z"


def test_time_range_unknown_key_falls_back_to_one_day() -> None:
    assert time_range("fortnight", NOW) == ("2025-12-31T12:00:00Z", "2026-01-01T12:00:00Z")
    assert time_range(None, NOW) == time_range("24h", NOW)


def test_records_are_applied_oldest_first() -> None:
    events = records_to_events(
        [
            {"temperature": 23, "timestamp": 1_767_268_800_000},
            {"temperature": 21, "timestamp": 1_767_268_700_000},
        ],
        prefix="stream",
        device_id="device9988",
        now=NOW,
    )
    assert [event.data["temperature"] for event in events] == [21, 23]
    assert all(event.source is EventSource.HISTORY for event in events)


def test_payload_envelopes_and_robot_topics_are_unwrapped() -> None:
    events = records_to_events(
        [
            {
                "topic": "stream/device9988/robots/r7/battery",
                "payload": json.dumps({"battery": 55}),
                "timestamp": 1_767_268_800_000,
            },
            {"topic": "stream/device9988", "payload": {"humidity": 44}},
        ],
        prefix="stream",
        device_id="device9988",
        now=NOW,
    )
    by_kind = {event.kind: event for event in events}

    assert by_kind[EventKind.ROBOT_BATTERY].robot_id == "r7"
    assert by_kind[EventKind.ROBOT_BATTERY].data == {"battery": 55}
    assert by_kind[EventKind.ENVIRONMENT].data == {"humidity": 44}


@pytest.mark.asyncio
async def test_fetch_stream_data_request_body() -> None:
    http = _FakeHttp({"status": "Success", "data": [{"pressure": 20}]})
    events = await fetch_stream_data(http, "deviceZX91", history_range="1h", now=NOW)

    assert http.requests == [
        (
            STREAM_DATA_ENDPOINT,
            {
                "deviceId": "deviceZX91",
                "startTime": "2026-01-01T11:00:00Z",
                "endTime": "2026-01-01T12:00:00Z",
                "pagination": "0",
                "pageSize": "100",
            },
        )
    ]
    assert [(event.kind, event.device_id, event.data) for event in events] == [
        (EventKind.ENVIRONMENT, "deviceZX91", {"pressure": 20})
    ]


@pytest.mark.asyncio
async def test_fetch_state_details_accepts_single_object() -> None:
    http = _FakeHttp({"status": "success", "data": {"ac_power": "off", "air_purifier": "ACTIVE"}})
    events = await fetch_state_details(http, "device9988", now=NOW)

    assert http.requests == [(STATE_DETAILS_ENDPOINT, {"deviceId": "device9988"})]
    kinds = {event.kind: event.data for event in events}
    assert kinds[EventKind.AC] == {"ac_power": "OFF"}
    assert kinds[EventKind.AIR_PURIFIER] == {"air_purifier": "ACTIVE"}
    assert all(event.source is EventSource.HISTORY for event in events)


@pytest.mark.asyncio
async def test_fetch_raises_on_error_status() -> None:
    http = _FakeHttp({"status": "Error", "message": "device not found"})
    with pytest.raises(FabrixTransportError) as excinfo:
        await fetch_state_details(http, "device9988", now=NOW)
    assert excinfo.value.endpoint == STATE_DETAILS_ENDPOINT


@pytest.mark.asyncio
async def test_fetch_tolerates_missing_data() -> None:
    assert await fetch_stream_data(_FakeHttp({"status": "Success"}), "device9988", now=NOW) == []


class _FakeResponse:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class _FakeSession:
    def __init__(self, status: int = 200, text: str = "{}") -> None:
        self.closed = False
        self.status = status
        self.text = text
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, *, data: str, headers: dict[str, str]) -> _FakeResponse:
        self.calls.append({"url": url, "data": data, "headers": headers})
        return _FakeResponse(self.status, self.text)

    async def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_rest_transport_posts_json_with_token() -> None:
    session = _FakeSession(text='{"status": "Success", "data": []}')
    config = FabrixConfig(api_base_url="https://api.example.test/", token="tok")
    transport = RestTransport(config, http_session=session)  # type: ignore[arg-type]

    result = await transport.post_json(STATE_DETAILS_ENDPOINT, {"deviceId": "device9988"})

    assert result == {"status": "Success", "data": []}
    call = session.calls[0]
    assert call["url"] == "https://api.example.test/get-state-details/device"
    assert json.loads(call["data"]) == {"deviceId": "device9988"}
    assert call["headers"]["X-Token"] == "tok"

    await transport.close()
    assert not session.closed


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "text"),
    [(500, "oops"), (200, "not json"), (200, "[1, 2]")],
)
async def test_rest_transport_rejects_bad_responses(status: int, text: str) -> None:
    transport = RestTransport(FabrixConfig(), http_session=_FakeSession(status, text))  # type: ignore[arg-type]
    with pytest.raises(FabrixTransportError) as excinfo:
        await transport.post_json(STREAM_DATA_ENDPOINT, {})
    assert excinfo.value.endpoint == STREAM_DATA_ENDPOINT
    if status != 200:
        assert excinfo.value.status_code == status


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FABRIX_BROKER_HOST", "broker.local")
    monkeypatch.setenv("FABRIX_BROKER_PORT", "8883")
    monkeypatch.setenv("FABRIX_USE_TLS", "yes")
    monkeypatch.setenv("FABRIX_PICKUP_DWELL", "4.5")

    config = FabrixConfig.from_env(history_range="1h")

    assert (config.broker_host, config.broker_port, config.use_tls) == ("broker.local", 8883, True)
    assert config.pickup_dwell == 4.5
    assert config.history_range == "1h"


def test_config_from_env_rejects_bad_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FABRIX_BROKER_PORT", "eighty")
    with pytest.raises(FabrixConfigError):
        FabrixConfig.from_env()


def test_config_device_lookup() -> None:
    config = FabrixConfig()
    assert config.device("deviceA72Q").zone == "Loading Bay"
    with pytest.raises(FabrixConfigError):
        config.device("device-x")

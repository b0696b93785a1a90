"""Per-topic channels feeding a single reconciliation loop.

Every subscribed topic owns a bounded buffer. Producers (the broker
callback) only enqueue; one consumer task drains messages in arrival order
across all topics, decodes them and applies the resulting events to the
store. When a buffer is full its oldest pending message is dropped.

Closing a channel discards its pending messages, so once a topic is closed
nothing already received on it can reach the store. A topic reopened later
gets a fresh buffer; wake-ups left over from the old one are ignored.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pyfabrix._constants import CHANNEL_CAPACITY
from pyfabrix.ingestion.messages import build_events, decode_message
from pyfabrix.ingestion.topics import normalize_topic
from pyfabrix.state.store import TelemetryStore

_logger = logging.getLogger(__name__)

# (sequence, payload, received_at)
_Pending = tuple[int, Any, datetime]
_Channel = deque[_Pending]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IngestionPipeline:
    """Bounded per-topic buffers drained by one reconciliation loop."""

    def __init__(
        self,
        store: TelemetryStore,
        *,
        capacity: int = CHANNEL_CAPACITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._capacity = capacity
        self._clock = clock
        self._channels: dict[str, _Channel] = {}
        # One entry per accepted message, in arrival order.
        self._ready: asyncio.Queue[tuple[str, _Channel, int]] = asyncio.Queue()
        self._sequence = itertools.count()
        self._task: asyncio.Task[None] | None = None
        self._last_message_at: datetime | None = None
        self._dropped = 0

    @property
    def last_message_at(self) -> datetime | None:
        return self._last_message_at

    @property
    def dropped(self) -> int:
        """Messages discarded because a channel overflowed."""
        return self._dropped

    def topics(self) -> tuple[str, ...]:
        return tuple(self._channels)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def open(self, topic: str) -> None:
        key = normalize_topic(topic)
        if key not in self._channels:
            self._channels[key] = deque(maxlen=self._capacity or None)

    def close(self, topic: str) -> int:
        """Close a channel; returns the number of pending messages discarded."""
        channel = self._channels.pop(normalize_topic(topic), None)
        if channel is None:
            return 0
        discarded = len(channel)
        channel.clear()
        if discarded:
            _logger.debug("Discarded %d pending messages on %s", discarded, topic)
        return discarded

    def submit(self, topic: str, payload: Any, received_at: datetime | None = None) -> bool:
        """Enqueue a raw message; must be called on the event loop thread.

        Returns ``False`` when the topic has no open channel.
        """
        key = normalize_topic(topic)
        channel = self._channels.get(key)
        if channel is None:
            _logger.debug("Dropping message on closed topic %s", topic)
            return False
        stamp = received_at or self._clock()
        self._last_message_at = stamp
        if channel.maxlen is not None and len(channel) == channel.maxlen:
            self._dropped += 1
            _logger.warning("Channel %s is full; dropped its oldest message", topic)
        sequence = next(self._sequence)
        channel.append((sequence, payload, stamp))
        self._ready.put_nowait((key, channel, sequence))
        return True

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def process(self, topic: str, payload: Any, received_at: datetime) -> int:
        """Decode one message and apply its events; returns the event count."""
        message = decode_message(topic, payload, received_at)
        events = build_events(message)
        for event in events:
            try:
                self._store.apply(event)
            except Exception:
                _logger.exception("Failed to apply %s event from %s", event.kind, topic)
        return len(events)

    def _next_pending(self, key: str, channel: _Channel, sequence: int) -> tuple[Any, datetime] | None:
        # Skip wake-ups for closed or replaced channels and for dropped messages.
        if self._channels.get(key) is not channel or not channel or channel[0][0] != sequence:
            return None
        _, payload, stamp = channel.popleft()
        return payload, stamp

    def drain(self) -> int:
        """Process everything currently pending; returns the messages handled."""
        handled = 0
        while not self._ready.empty():
            key, channel, sequence = self._ready.get_nowait()
            item = self._next_pending(key, channel, sequence)
            if item is None:
                continue
            self.process(key, *item)
            handled += 1
        return handled

    async def run(self) -> None:
        while True:
            key, channel, sequence = await self._ready.get()
            item = self._next_pending(key, channel, sequence)
            if item is None:
                continue
            self.process(key, *item)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run(), name="pyfabrix-reconcile")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

"""Deterministic state merge policy.

This module intentionally contains *no* payload parsing or placeholder filtering.
The ingestion/Pydantic boundary is responsible for producing normalized patches
and timestamps.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pyfabrix._constants import LIVENESS_WINDOW
from pyfabrix.state.events import EventSource

_LIVE_SOURCES = frozenset({EventSource.STREAM, EventSource.STATE})


def is_live(last_update: datetime | None, now: datetime, window: timedelta = LIVENESS_WINDOW) -> bool:
    """The single liveness rule: updated less than ``window`` ago."""
    if last_update is None:
        return False
    return now - last_update < window


def touches_liveness(source: EventSource) -> bool:
    """Only live broker traffic refreshes ``last_update``."""
    return source in _LIVE_SOURCES


def should_overwrite(*, has_live_data: bool, incoming_source: EventSource) -> bool:
    """Decide whether incoming values replace known ones.

    Live and local updates are last-write-wins. Backfill (history,
    snapshots) only fills fields that are still unknown once live data has
    arrived, so a slow history fetch cannot revert fresher values.
    """
    if incoming_source in _LIVE_SOURCES or incoming_source == EventSource.LOCAL:
        return True
    return not has_live_data


def merge_progress(previous: int, computed: int, *, same_phase: bool) -> int:
    """Progress never moves backwards within a phase."""
    if same_phase:
        return max(previous, computed)
    return computed

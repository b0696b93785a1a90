"""Bounded, deduplicated alert log."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from pyfabrix._constants import ALERT_DEDUP_WINDOW, MAX_ALERTS
from pyfabrix.ingestion.normalize import datetime_to_ms
from pyfabrix.models.alert import Alert, Severity

_logger = logging.getLogger(__name__)


def new_alert_id(now: datetime) -> str:
    return f"alert-{datetime_to_ms(now)}-{secrets.token_hex(5)}"


class AlertLog:
    """Most-recent-first alert list.

    An alert is suppressed when an alert with the identical message is
    still in the log and was raised less than ``window`` ago. The log keeps
    at most ``capacity`` entries; the oldest fall off.

    The backing tuple is replaced on every change, so a tuple returned by
    :meth:`entries` is never mutated afterwards.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime],
        window: timedelta = ALERT_DEDUP_WINDOW,
        capacity: int = MAX_ALERTS,
    ) -> None:
        self._clock = clock
        self._window = window
        self._capacity = capacity
        self._alerts: tuple[Alert, ...] = ()

    def __len__(self) -> int:
        return len(self._alerts)

    def is_duplicate(self, message: str, now: datetime) -> bool:
        return any(alert.message == message and now - alert.timestamp < self._window for alert in self._alerts)

    def add(
        self,
        severity: Severity,
        device_id: str,
        message: str,
        *,
        robot_id: str | None = None,
        metric: str | None = None,
    ) -> Alert | None:
        """Record an alert; returns ``None`` when it was deduplicated."""
        now = self._clock()
        if self.is_duplicate(message, now):
            _logger.debug("Suppressed duplicate alert: %s", message)
            return None
        alert = Alert(
            id=new_alert_id(now),
            severity=severity,
            device_id=device_id,
            robot_id=robot_id,
            message=message,
            timestamp=now,
            metric=metric,
        )
        self._alerts = (alert, *self._alerts)[: self._capacity]
        _logger.info("New %s alert for %s: %s", severity, device_id, message)
        return alert

    def entries(self) -> tuple[Alert, ...]:
        return self._alerts

    def clear(self, alert_id: str) -> bool:
        remaining = tuple(alert for alert in self._alerts if alert.id != alert_id)
        removed = len(remaining) != len(self._alerts)
        self._alerts = remaining
        return removed

    def clear_all(self) -> None:
        self._alerts = ()

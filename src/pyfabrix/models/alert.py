"""Severity levels and alerts."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pyfabrix.models._base import FabrixRecord


class Severity(StrEnum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def worst(cls, *levels: Severity) -> Severity:
        """Return the most severe of *levels* (``NORMAL`` when empty)."""
        result = cls.NORMAL
        for level in levels:
            if level.rank > result.rank:
                result = level
        return result


_RANKS = {Severity.NORMAL: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


class Alert(FabrixRecord):
    """A threshold violation or explicit fault flag."""

    id: str
    severity: Severity
    device_id: str
    robot_id: str | None = None
    message: str
    timestamp: datetime
    metric: str | None = None

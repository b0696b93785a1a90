"""Normalization helpers.

Lenient scalar parsing, placeholder handling and timestamp conversion.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


_TRUTHY = frozenset({"true", "on", "yes", "1", "active", "enabled"})
_FALSY = frozenset({"false", "off", "no", "0", "inactive", "disabled"})


def safe_bool(value: Any) -> bool | None:
    """Parse producer booleans (``true``, ``"ON"``, ``1``, ``"ACTIVE"``)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return bool(value)
    if isinstance(value, str):
        key = value.strip().lower()
        if key in _TRUTHY:
            return True
        if key in _FALSY:
            return False
    return None


def is_meaningful(value: Any) -> bool:
    """Return True if the value should be included in a state patch.

    This is intentionally opinionated and exists to keep the state/store layer
    free of placeholder/sentinel filtering.
    """

    if value is None:
        return False
    if value == "":
        return False
    if value == "--":
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    if value == {}:
        return False
    return bool(value != [])


def prune_patch(data: Any) -> Any:
    """Recursively drop non-meaningful values from a patch structure.

    - Dicts: remove keys with non-meaningful values; recurse into nested dicts/lists.
    - Lists: prune elements and drop non-meaningful items.
    - Scalars: returned as-is.

    State merging assumes incoming patches are already pruned.
    """

    if isinstance(data, dict):
        pruned: dict[str, Any] = {}
        for key, value in data.items():
            cleaned = prune_patch(value)
            if is_meaningful(cleaned):
                pruned[key] = cleaned
        return pruned

    if isinstance(data, list):
        items: list[Any] = []
        for item in data:
            cleaned = prune_patch(item)
            if is_meaningful(cleaned):
                items.append(cleaned)
        return items

    return data


def normalize_timestamp_ms(value: Any) -> int | None:
    """Normalize producer timestamps to epoch milliseconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Seconds (< 1e11) -> milliseconds
    - ISO-8601 strings are accepted
    """

    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return int(moment.timestamp() * 1000)
    if isinstance(value, str):
        text = value.strip()
        try:
            ts = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            return normalize_timestamp_ms(parsed)
    else:
        try:
            ts = float(value)
        except (TypeError, ValueError):
            return None
    if not math.isfinite(ts) or ts <= 0:
        return None
    if ts < 1e11:
        ts *= 1000.0
    return int(ts)


def ms_to_datetime(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000.0, tz=UTC)


def datetime_to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)

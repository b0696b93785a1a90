"""Base models for inbound payloads and canonical records.

Inbound payload models inherit from :class:`FabrixPayload` which provides:

* a ``model_validator(mode="before")`` that strips producer sentinel
  values (``""``, ``"--"``, ``"null"``, NaN) so the field default is used;
* a ``raw`` dict that captures the original payload.

Canonical state records inherit from :class:`FabrixRecord`: frozen,
strict about unknown keys, and replaced wholesale on every update.
"""

from __future__ import annotations

import math
from typing import Any, ClassVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from pyfabrix.ingestion.normalize import normalize_timestamp_ms

# Sentinel strings producers use for "not available".
_SENTINELS = frozenset({"", "--", "null", "None", "NaN", "nan", "undefined"})


class FabrixPayload(BaseModel):
    """Base for inbound telemetry payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    flatten_keys: ClassVar[tuple[str, ...]] = ("data",)
    """Nested objects whose keys are lifted to the top level before validation."""

    timestamp: int | None = Field(default=None, validation_alias=AliasChoices("timestamp", "ts", "time"))
    """Producer timestamp in epoch milliseconds."""

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original payload dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Strip sentinel values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        for key in cls.flatten_keys:
            nested = values.get(key)
            if isinstance(nested, dict):
                merged.update(nested)
        cleaned = FabrixPayload._clean_dict(merged)
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> int | None:
        return normalize_timestamp_ms(value)


class FabrixRecord(BaseModel):
    """Base for canonical, copy-on-write state records."""

    model_config = ConfigDict(frozen=True, extra="forbid")

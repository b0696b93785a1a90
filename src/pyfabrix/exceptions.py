"""Custom exception hierarchy for pyfabrix."""

from __future__ import annotations

from collections.abc import Mapping


class FabrixError(Exception):
    """Base exception for all pyfabrix errors."""


class FabrixConfigError(FabrixError):
    """Invalid or missing static configuration.

    Malformed *persisted* settings never raise this; they fall back to
    defaults when loaded.
    """


class FabrixTransportError(FabrixError):
    """Broker or HTTP failure (connect timeout, protocol error, non-200)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class FabrixParseError(FabrixError):
    """A message body could not be decoded.

    Only raised inside the ingestion layer, which converts it into an
    unparsed wrapper event.
    """

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class FabrixValidationError(FabrixError):
    """Operator input rejected; ``field_errors`` maps field name to message."""

    def __init__(self, field_errors: Mapping[str, str]) -> None:
        self.field_errors = dict(field_errors)
        summary = "; ".join(f"{name}: {text}" for name, text in self.field_errors.items())
        super().__init__(summary or "invalid input")


class FabrixCommandError(FabrixError):
    """An operator command could not be delivered.

    Commands are never retried automatically.
    """

    def __init__(self, message: str, *, destination: str = "") -> None:
        self.destination = destination
        super().__init__(message)

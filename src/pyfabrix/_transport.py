"""HTTP transport for the historical-state REST service."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pyfabrix._redact import redact_for_log
from pyfabrix.config import FabrixConfig
from pyfabrix.exceptions import FabrixTransportError

_logger = logging.getLogger(__name__)

USER_AGENT = "pyfabrix"


class HttpTransport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestTransport`) concrete.
    """

    async def post_json(self, endpoint: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        ...


class RestTransport:
    """JSON-over-HTTP transport that authenticates with an ``X-Token`` header."""

    def __init__(
        self,
        config: FabrixConfig,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._http = http_session
        self._owns_session = http_session is None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.api_timeout),
            )
            self._owns_session = True
        return self._http

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._owns_session and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    async def post_json(self, endpoint: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """POST *payload* as JSON and return the decoded object.

        Raises :class:`FabrixTransportError` for non-200 responses, network
        failures and bodies that are not a JSON object.
        """
        headers: dict[str, str] = {
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        if self._config.token:
            headers["X-Token"] = self._config.token

        url = f"{self._config.api_base_url.rstrip('/')}{endpoint}"
        body = json.dumps(dict(payload), separators=(",", ":"))

        _logger.debug("POST %s %s", url, redact_for_log(dict(payload)))

        try:
            async with self._session().post(url, data=body, headers=headers) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise FabrixTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except FabrixTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise FabrixTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise FabrixTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

        if not isinstance(result, dict):
            raise FabrixTransportError(
                f"Expected a JSON object from {endpoint}",
                endpoint=endpoint,
            )
        return result

"""HTTP transport for the pull fallback (bearer auth, JSON, error mapping)."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

import aiohttp

from paysync._constants import USER_AGENT
from paysync._redact import redact_for_log
from paysync.config import SyncConfig
from paysync.exceptions import ApiError, AuthenticationError, TransportError

_logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str | None]]


class Transport(Protocol):
    """Structural transport interface used by the pull endpoint modules."""

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any: ...


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class RestTransport:
    """Authenticated JSON-over-HTTP transport."""

    def __init__(
        self,
        config: SyncConfig,
        http_session: aiohttp.ClientSession,
        token_provider: TokenProvider,
    ) -> None:
        self._config = config
        self._http = http_session
        self._token_provider = token_provider

    async def _headers(self, endpoint: str) -> dict[str, str]:
        token = await self._token_provider()
        if not token:
            raise AuthenticationError("User not authenticated", endpoint=endpoint)
        return {
            "accept": "application/json",
            "authorization": f"Bearer {token}",
            "user-agent": USER_AGENT,
        }

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        """GET ``base_url + endpoint`` and return the decoded JSON body."""
        headers = await self._headers(endpoint)
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        timeout = aiohttp.ClientTimeout(total=self._config.pull_timeout)

        _logger.debug("GET %s params=%s", url, redact_for_log(dict(params or {})))

        try:
            async with self._http.get(url, params=dict(params or {}), headers=headers, timeout=timeout) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(
                f"Request to {endpoint} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc

        body: Any = None
        decode_error: json.JSONDecodeError | None = None
        if text.strip():
            try:
                body = json.loads(text)
            except json.JSONDecodeError as exc:
                decode_error = exc

        if status in (401, 403):
            raise AuthenticationError(
                _error_message(body) or f"HTTP {status} from {endpoint}",
                code=str(status),
                endpoint=endpoint,
            )
        if not 200 <= status < 300:
            message = _error_message(body)
            if message is not None:
                raise ApiError(message, code=str(status), endpoint=endpoint)
            raise TransportError(
                f"HTTP {status} from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            )
        if decode_error is not None:
            raise TransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from decode_error

        _logger.debug("GET %s -> %s %s", endpoint, status, redact_for_log(body))
        return body

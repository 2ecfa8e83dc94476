"""Shared helpers for the pull endpoint modules."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from paysync._transport import Transport
from paysync.exceptions import ApiError


def unwrap_data(body: Any, *, endpoint: str, key: str | None = None) -> Any:
    """Return the useful part of a response body.

    Accepts bare values as well as ``{"data": ...}`` and ``{key: ...}``
    wrappers, and maps ``{"success": false, "message": ...}`` to
    :class:`ApiError`.
    """
    if not isinstance(body, Mapping):
        return body
    if body.get("success") is False:
        raise ApiError(
            str(body.get("message") or body.get("error") or "request failed"),
            code=str(body.get("code", "")),
            endpoint=endpoint,
        )
    if "data" in body:
        body = body["data"]
    if key is not None and isinstance(body, Mapping) and key in body:
        return body[key]
    return body


async def get_data(
    transport: Transport,
    endpoint: str,
    *,
    params: Mapping[str, str] | None = None,
    key: str | None = None,
) -> Any:
    body = await transport.get_json(endpoint, params)
    return unwrap_data(body, endpoint=endpoint, key=key)

"""Wallet balance endpoint."""

from __future__ import annotations

from paysync._api._common import get_data
from paysync._constants import ENDPOINT_BALANCE
from paysync._transport import Transport
from paysync.exceptions import ApiError, PayloadError
from paysync.state.merge import coerce_balance


async def fetch_balance(transport: Transport) -> float:
    """Fetch the current wallet balance."""
    data = await get_data(transport, ENDPOINT_BALANCE, key="balance")
    try:
        return coerce_balance(data)
    except PayloadError as exc:
        raise ApiError(f"Unexpected balance response: {exc}", endpoint=ENDPOINT_BALANCE) from exc

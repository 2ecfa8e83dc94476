"""Transaction history endpoint."""

from __future__ import annotations

import logging

from paysync._api._common import get_data
from paysync._constants import ENDPOINT_TRANSACTIONS
from paysync._transport import Transport
from paysync.exceptions import ApiError, PayloadError
from paysync.models.transaction import Transaction, TransactionFilters
from paysync.state.merge import parse_record

_logger = logging.getLogger(__name__)


async def fetch_transactions(
    transport: Transport,
    filters: TransactionFilters | None = None,
    *,
    limit: int | None = None,
) -> list[Transaction]:
    """Fetch the transaction history, newest first as returned by the backend.

    *filters* are passed through unchanged as query parameters. Records that
    fail validation are skipped rather than failing the whole request.
    """
    params = filters.to_query_params() if filters is not None else {}
    if limit is not None:
        params["limit"] = str(limit)
    data = await get_data(transport, ENDPOINT_TRANSACTIONS, params=params, key="transactions")
    if not isinstance(data, list):
        raise ApiError(
            f"Unexpected transactions response: expected a list, got {type(data).__name__}",
            endpoint=ENDPOINT_TRANSACTIONS,
        )

    records: list[Transaction] = []
    for item in data:
        try:
            records.append(parse_record(item))
        except PayloadError as exc:
            _logger.debug("Skipping malformed transaction from %s: %s", ENDPOINT_TRANSACTIONS, exc)
    return records

"""Pull fallback API used when the push channel stays silent."""

from __future__ import annotations

from typing import Protocol

from paysync._api.balance import fetch_balance
from paysync._api.transactions import fetch_transactions
from paysync._transport import Transport
from paysync.models.transaction import Transaction, TransactionFilters


class PullApi(Protocol):
    """Point-in-time reads of each topic."""

    async def fetch_balance(self) -> float: ...

    async def fetch_transactions(self, filters: TransactionFilters | None = None) -> list[Transaction]: ...


class RestPullApi:
    """:class:`PullApi` over the REST backend."""

    def __init__(self, transport: Transport, *, transactions_limit: int | None = None) -> None:
        self._transport = transport
        self._transactions_limit = transactions_limit

    async def fetch_balance(self) -> float:
        return await fetch_balance(self._transport)

    async def fetch_transactions(self, filters: TransactionFilters | None = None) -> list[Transaction]:
        return await fetch_transactions(self._transport, filters, limit=self._transactions_limit)

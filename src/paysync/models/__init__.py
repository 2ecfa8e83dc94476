"""Data models for push and pull payloads."""

from paysync.models._base import PaySyncBaseModel, PaySyncTimestamp, parse_timestamp
from paysync.models.balance import BalanceUpdate
from paysync.models.envelope import PayloadKind, PushEnvelope
from paysync.models.transaction import Transaction, TransactionFilters

__all__ = [
    "BalanceUpdate",
    "PaySyncBaseModel",
    "PaySyncTimestamp",
    "PayloadKind",
    "PushEnvelope",
    "Transaction",
    "TransactionFilters",
    "parse_timestamp",
]

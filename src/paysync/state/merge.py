"""Incremental merge engine.

Applies pushed values to the per-topic state:

- scalar topics: every valid value replaces the previous one
- collection topics: full lists replace the collection; single records are
  upserted by ``id`` (update in place, otherwise prepend)

After every collection mutation the list is re-sorted newest first (stable,
so records with equal timestamps keep their relative order) and truncated to
the state's ``max_items``. Malformed input is logged and dropped; it never
raises and never touches existing state.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from paysync._redact import redact_for_log
from paysync.exceptions import PayloadError
from paysync.models.balance import BalanceUpdate
from paysync.models.transaction import Transaction
from paysync.state.events import SyncSource
from paysync.state.store import CollectionState, ScalarState, StateStore

_logger = logging.getLogger(__name__)


def coerce_balance(payload: Any) -> float:
    """Extract a balance from ``{"balance": n}`` or a bare number."""
    if isinstance(payload, Mapping):
        try:
            return BalanceUpdate.model_validate(dict(payload)).balance
        except ValidationError as exc:
            raise PayloadError(f"invalid balance payload: {exc.errors()[0]['msg']}") from exc
    try:
        return BalanceUpdate.model_validate({"balance": payload}).balance
    except ValidationError as exc:
        raise PayloadError(f"invalid balance value: {exc.errors()[0]['msg']}") from exc


def parse_record(payload: Any) -> Transaction:
    """Validate a single-record payload (must carry ``id`` and a timestamp)."""
    if isinstance(payload, Transaction):
        return payload
    if not isinstance(payload, Mapping):
        raise PayloadError(f"record must be an object, got {type(payload).__name__}")
    try:
        return Transaction.model_validate(dict(payload))
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise PayloadError(f"invalid record ({', '.join(fields)})") from exc


def sort_and_cap(items: Iterable[Transaction], max_items: int) -> list[Transaction]:
    """Newest first, stable for equal timestamps, at most *max_items*."""
    ordered = sorted(items, key=lambda item: item.sort_key, reverse=True)
    return ordered[:max_items]


def build_collection(records: Iterable[Any], max_items: int) -> list[Transaction]:
    """Validate a full list; malformed entries are dropped, first id occurrence wins."""
    seen: set[str] = set()
    valid: list[Transaction] = []
    dropped = 0
    for raw in records:
        try:
            record = parse_record(raw)
        except PayloadError as exc:
            dropped += 1
            _logger.debug("Dropping malformed record from list: %s", exc)
            continue
        if record.id in seen:
            dropped += 1
            continue
        seen.add(record.id)
        valid.append(record)
    if dropped:
        _logger.warning("Dropped %d malformed or duplicate records from full list", dropped)
    return sort_and_cap(valid, max_items)


def upsert_record(items: list[Transaction], record: Transaction, max_items: int) -> list[Transaction]:
    """Replace the record with the same id in place, or prepend it as newest."""
    updated = list(items)
    for index, existing in enumerate(updated):
        if existing.id == record.id:
            updated[index] = record
            break
    else:
        updated.insert(0, record)
    return sort_and_cap(updated, max_items)


class MergeEngine:
    """Writes snapshots and incremental updates into a :class:`StateStore`."""

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def apply_snapshot(self, topic: str, payload: Any, *, source: SyncSource) -> bool:
        """Replace the whole topic state. Returns ``False`` if *payload* was rejected."""
        state = self._store.get(topic)
        if state is None:
            _logger.warning("Snapshot for unknown topic %s dropped", topic)
            return False

        if isinstance(state, ScalarState):
            try:
                value = coerce_balance(payload)
            except PayloadError as exc:
                _logger.warning("Discarding %s snapshot from %s: %s", topic, source, exc)
                return False
            state.value = value
        else:
            if isinstance(payload, (str, bytes)) or not isinstance(payload, Iterable) or isinstance(payload, Mapping):
                _logger.warning(
                    "Discarding %s snapshot from %s: expected a list, got %s",
                    topic,
                    source,
                    type(payload).__name__,
                )
                return False
            state.items = build_collection(payload, state.max_items)

        state.source = source
        state.updated_at = self._store.now()
        _logger.debug("Applied %s snapshot to %s", source, topic)
        self._store.notify(topic)
        return True

    def apply_update(self, topic: str, payload: Any) -> bool:
        """Apply one pushed non-snapshot message. Returns ``False`` if dropped."""
        state = self._store.get(topic)
        if state is None:
            _logger.warning("Update for unknown topic %s dropped", topic)
            return False

        if isinstance(state, ScalarState):
            try:
                state.value = coerce_balance(payload)
            except PayloadError as exc:
                _logger.warning("Discarding %s update %s: %s", topic, redact_for_log(payload), exc)
                return False
        elif isinstance(payload, list):
            state.items = build_collection(payload, state.max_items)
        elif not self._apply_record(topic, state, payload):
            return False

        state.source = SyncSource.PUSH
        state.updated_at = self._store.now()
        self._store.notify(topic)
        return True

    def _apply_record(self, topic: str, state: CollectionState, payload: Any) -> bool:
        try:
            record = parse_record(payload)
        except PayloadError as exc:
            _logger.warning("Discarding %s update %s: %s", topic, redact_for_log(payload), exc)
            return False
        before = len(state.items)
        state.items = upsert_record(state.items, record, state.max_items)
        _logger.debug(
            "Merged record %s into %s (%d -> %d items)",
            record.id,
            topic,
            before,
            len(state.items),
        )
        return True

from __future__ import annotations

import random
from datetime import UTC, datetime
from typing import Any

import pytest

from paysync.exceptions import PayloadError
from paysync.state.events import SyncSource, TopicKind
from paysync.state.merge import MergeEngine, build_collection, coerce_balance, parse_record, upsert_record
from paysync.state.store import StateStore


def _tx(tx_id: str, ts: float, **extra: Any) -> dict[str, Any]:
    return {"id": tx_id, "timestamp": ts, **extra}


def _engine(max_items: int = 50) -> tuple[MergeEngine, StateStore]:
    store = StateStore(clock=lambda: datetime(2026, 1, 1, tzinfo=UTC))
    store.register("balance", TopicKind.SCALAR)
    store.register("transactions", TopicKind.COLLECTION, max_items=max_items)
    return MergeEngine(store), store


def _ids(store: StateStore) -> list[str]:
    return [item.id for item in store.value("transactions")]


def test_snapshot_is_sorted_newest_first_and_capped() -> None:
    engine, store = _engine(max_items=3)

    applied = engine.apply_snapshot(
        "transactions",
        [_tx("a", 1), _tx("b", 4), _tx("c", 3), _tx("d", 2), _tx("e", 5)],
        source=SyncSource.PULL,
    )

    assert applied is True
    assert _ids(store) == ["e", "b", "c"]
    state = store.require("transactions")
    assert state.source == SyncSource.PULL
    assert state.updated_at == datetime(2026, 1, 1, tzinfo=UTC)


def test_snapshot_drops_malformed_and_keeps_first_duplicate() -> None:
    engine, store = _engine()

    engine.apply_snapshot(
        "transactions",
        [
            _tx("a", 10, name="first"),
            {"id": "no-ts"},
            {"timestamp": 3},
            "garbage",
            _tx("a", 20, name="second"),
            _tx("b", 5),
        ],
        source=SyncSource.PUSH,
    )

    items = store.value("transactions")
    assert [item.id for item in items] == ["a", "b"]
    assert items[0].name == "first"


def test_snapshot_rejects_non_list_payload() -> None:
    engine, store = _engine()
    engine.apply_snapshot("transactions", [_tx("a", 1)], source=SyncSource.PULL)

    assert engine.apply_snapshot("transactions", {"id": "x"}, source=SyncSource.PUSH) is False
    assert engine.apply_snapshot("transactions", "nope", source=SyncSource.PUSH) is False
    assert _ids(store) == ["a"]


def test_update_with_known_id_replaces_in_place() -> None:
    engine, store = _engine()
    engine.apply_snapshot("transactions", [_tx("a", 30), _tx("b", 20), _tx("c", 10)], source=SyncSource.PULL)

    engine.apply_update("transactions", _tx("b", 20, status="Completed"))

    items = store.value("transactions")
    assert [item.id for item in items] == ["a", "b", "c"]
    assert items[1].status == "Completed"
    assert store.require("transactions").source == SyncSource.PUSH


def test_update_with_new_id_inserts_and_caps() -> None:
    engine, store = _engine(max_items=3)
    engine.apply_snapshot("transactions", [_tx("a", 30), _tx("b", 20), _tx("c", 10)], source=SyncSource.PULL)

    engine.apply_update("transactions", _tx("d", 40))
    assert _ids(store) == ["d", "a", "b"]

    engine.apply_update("transactions", _tx("old", 1))
    assert _ids(store) == ["d", "a", "b"]


def test_update_moving_timestamp_resorts() -> None:
    engine, store = _engine()
    engine.apply_snapshot("transactions", [_tx("a", 30), _tx("b", 20)], source=SyncSource.PULL)

    engine.apply_update("transactions", _tx("b", 50))

    assert _ids(store) == ["b", "a"]


def test_equal_timestamps_keep_relative_order() -> None:
    engine, store = _engine()
    engine.apply_snapshot("transactions", [_tx("x", 5), _tx("y", 5), _tx("z", 5)], source=SyncSource.PULL)
    assert _ids(store) == ["x", "y", "z"]

    engine.apply_update("transactions", _tx("y", 5, amount=1.0))
    assert _ids(store) == ["x", "y", "z"]


def test_update_with_full_list_replaces_collection() -> None:
    engine, store = _engine()
    engine.apply_snapshot("transactions", [_tx("a", 1)], source=SyncSource.PULL)

    assert engine.apply_update("transactions", [_tx("b", 2), _tx("c", 3)]) is True

    assert _ids(store) == ["c", "b"]


def test_malformed_update_leaves_state_untouched() -> None:
    engine, store = _engine()
    engine.apply_snapshot("transactions", [_tx("a", 1)], source=SyncSource.PULL)
    before = store.value("transactions")

    assert engine.apply_update("transactions", {"timestamp": 2}) is False
    assert engine.apply_update("transactions", {"id": "", "timestamp": 2}) is False
    assert engine.apply_update("transactions", {"id": "b", "timestamp": "yesterday"}) is False

    assert store.value("transactions") == before


def test_out_of_range_timestamp_drops_only_that_record() -> None:
    engine, store = _engine()

    applied = engine.apply_snapshot(
        "transactions",
        [_tx("a", 20), _tx("b", 10), _tx("bad", 1e20)],
        source=SyncSource.PUSH,
    )

    assert applied is True
    assert _ids(store) == ["a", "b"]
    assert engine.apply_update("transactions", _tx("bad", 1e20)) is False
    assert engine.apply_update("transactions", {"id": "bad", "timestamp": {"seconds": 1e15}}) is False
    assert _ids(store) == ["a", "b"]


def test_random_updates_keep_collection_invariants() -> None:
    rng = random.Random(1234)
    engine, store = _engine(max_items=10)
    engine.apply_snapshot("transactions", [], source=SyncSource.PULL)

    for _ in range(300):
        tx_id = f"id-{rng.randint(0, 25)}"
        engine.apply_update("transactions", _tx(tx_id, rng.randint(1, 1_000_000)))

        items = store.value("transactions")
        ids = [item.id for item in items]
        stamps = [item.timestamp for item in items]
        assert len(items) <= 10
        assert len(set(ids)) == len(ids)
        assert stamps == sorted(stamps, reverse=True)


def test_scalar_snapshot_and_update() -> None:
    engine, store = _engine()

    assert engine.apply_snapshot("balance", {"balance": 100}, source=SyncSource.PULL) is True
    assert store.value("balance") == 100.0

    assert engine.apply_update("balance", 75.5) is True
    assert store.value("balance") == 75.5
    assert store.require("balance").source == SyncSource.PUSH


@pytest.mark.parametrize("payload", [True, "12", None, float("inf"), {"balance": "n/a"}, [1, 2]])
def test_scalar_rejects_non_numeric(payload: Any) -> None:
    engine, store = _engine()
    engine.apply_snapshot("balance", 10, source=SyncSource.PULL)

    assert engine.apply_update("balance", payload) is False
    assert store.value("balance") == 10.0


def test_unknown_topic_is_dropped() -> None:
    engine, _store = _engine()

    assert engine.apply_update("rewards", {"points": 1}) is False
    assert engine.apply_snapshot("rewards", [], source=SyncSource.PUSH) is False


def test_listeners_are_notified_after_writes() -> None:
    engine, store = _engine()
    seen: list[str] = []
    remove = store.add_listener("balance", seen.append)

    engine.apply_update("balance", 1)
    engine.apply_update("balance", "bad")
    remove()
    engine.apply_update("balance", 2)

    assert seen == ["balance"]


def test_helpers() -> None:
    assert coerce_balance({"value": 3}) == 3.0
    with pytest.raises(PayloadError):
        coerce_balance({"amount": 3})
    with pytest.raises(PayloadError):
        parse_record(["not", "a", "record"])

    records = build_collection([_tx("a", 1), _tx("b", 2)], 50)
    updated = upsert_record(records, parse_record(_tx("c", 3)), 2)
    assert [item.id for item in updated] == ["c", "b"]
    assert [item.id for item in records] == ["b", "a"]

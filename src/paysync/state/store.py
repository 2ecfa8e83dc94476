"""In-memory per-topic state.

Each topic owns exactly one :class:`ScalarState` or :class:`CollectionState`.
Only the merge engine and the snapshot reconciler write to them; consumers
read copies through :class:`StateStore`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from paysync.models.transaction import Transaction
from paysync.state.events import SyncSource, TopicKind

_logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ScalarState(BaseModel):
    """A single authoritative number (e.g. the wallet balance)."""

    model_config = ConfigDict(extra="forbid")

    value: float | None = None
    is_loading: bool = False
    last_error: str | None = None
    source: SyncSource | None = None
    updated_at: datetime | None = None

    #: Value shown while logged out.
    logged_out_value: float = 0.0

    def reset_for_login(self) -> None:
        self.value = None
        self.is_loading = True
        self.last_error = None
        self.source = None
        self.updated_at = None

    def clear_for_logout(self) -> None:
        self.value = self.logged_out_value
        self.is_loading = False
        self.last_error = None
        self.source = None
        self.updated_at = None

    def snapshot_value(self) -> float | None:
        return self.value


class CollectionState(BaseModel):
    """An ordered, capped, id-unique list of records (newest first)."""

    model_config = ConfigDict(extra="forbid")

    items: list[Transaction] = Field(default_factory=list)
    max_items: int = 50
    is_loading: bool = False
    last_error: str | None = None
    source: SyncSource | None = None
    updated_at: datetime | None = None

    def reset_for_login(self) -> None:
        self.items = []
        self.is_loading = True
        self.last_error = None
        self.source = None
        self.updated_at = None

    def clear_for_logout(self) -> None:
        self.items = []
        self.is_loading = False
        self.last_error = None
        self.source = None
        self.updated_at = None

    def snapshot_value(self) -> list[Transaction]:
        # Records are frozen, a shallow copy is enough.
        return list(self.items)

    def ids(self) -> list[str]:
        return [item.id for item in self.items]


TopicState = ScalarState | CollectionState


class StateStore:
    """Holds the state of every configured topic and fans out change notices.

    State objects live as long as the store so views handed to consumers stay
    valid across login/logout; the lifecycle controller resets them.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._states: dict[str, TopicState] = {}
        self._listeners: dict[str, list[ChangeListener]] = {}

    def register(self, topic: str, kind: TopicKind, *, max_items: int = 50) -> TopicState:
        state: TopicState
        if kind == TopicKind.SCALAR:
            state = ScalarState()
        else:
            state = CollectionState(max_items=max_items)
        self._states[topic] = state
        return state

    @property
    def topics(self) -> list[str]:
        return list(self._states)

    def get(self, topic: str) -> TopicState | None:
        return self._states.get(topic)

    def require(self, topic: str) -> TopicState:
        state = self._states.get(topic)
        if state is None:
            raise KeyError(f"unknown topic: {topic}")
        return state

    def now(self) -> datetime:
        return self._clock()

    def value(self, topic: str) -> Any:
        """A detached copy of the topic's current value."""
        return self.require(topic).snapshot_value()

    def reset_for_login(self) -> None:
        for topic, state in self._states.items():
            state.reset_for_login()
            self.notify(topic)

    def clear_for_logout(self) -> None:
        for topic, state in self._states.items():
            state.clear_for_logout()
            self.notify(topic)

    def add_listener(self, topic: str, listener: ChangeListener) -> Callable[[], None]:
        """Call *listener(topic)* after every change; returns an unsubscribe function."""
        self._listeners.setdefault(topic, []).append(listener)

        def _remove() -> None:
            listeners = self._listeners.get(topic)
            if listeners is None:
                return
            self._listeners[topic] = [cand for cand in listeners if cand is not listener]
            if not self._listeners[topic]:
                self._listeners.pop(topic, None)

        return _remove

    def notify(self, topic: str) -> None:
        for listener in list(self._listeners.get(topic, [])):
            try:
                listener(topic)
            except Exception:
                _logger.warning("State listener for %s failed", topic, exc_info=True)

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from paysync.config import SyncConfig
from paysync.exceptions import PushChannelError
from paysync.lifecycle import SessionController
from paysync.models.envelope import PayloadKind, PushEnvelope
from paysync.models.transaction import Transaction, TransactionFilters
from paysync.session import SessionEvent, SessionListener
from paysync.state.events import ConnectionState
from paysync.state.store import StateStore
from paysync.topics import default_topics

FALLBACK_DELAY = 0.05


@dataclass
class FakePushChannel:
    """In-memory push channel; tests drive state changes and inbound messages."""

    user_id: str = "user-1"
    state: ConnectionState = ConnectionState.READY
    fail_connect: bool = False
    sent: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    handlers: dict[str, list[Callable[[PushEnvelope], None]]] = field(default_factory=dict)
    state_listeners: list[Callable[[ConnectionState], None]] = field(default_factory=list)
    connect_calls: int = 0
    closed: bool = False

    def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise PushChannelError("broker unreachable")
        if self.state == ConnectionState.DISCONNECTED:
            self.set_state(ConnectionState.CONNECTING)

    def close(self) -> None:
        self.closed = True
        self.handlers.clear()
        self.set_state(ConnectionState.DISCONNECTED)

    def subscribe(self, message_type: str, handler: Callable[[PushEnvelope], None]) -> Callable[[], None]:
        if self.closed:
            raise PushChannelError("push channel is closed")
        self.handlers.setdefault(message_type, []).append(handler)

        def _remove() -> None:
            handlers = self.handlers.get(message_type, [])
            self.handlers[message_type] = [cand for cand in handlers if cand is not handler]

        return _remove

    def send(self, message_type: str, request: dict[str, Any]) -> bool:
        self.sent.append((message_type, request))
        return self.state == ConnectionState.READY

    def add_state_listener(self, listener: Callable[[ConnectionState], None]) -> Callable[[], None]:
        self.state_listeners.append(listener)

        def _remove() -> None:
            self.state_listeners = [cand for cand in self.state_listeners if cand is not listener]

        return _remove

    # -- test helpers --------------------------------------------------

    def set_state(self, state: ConnectionState) -> None:
        self.state = state
        for listener in list(self.state_listeners):
            listener(state)

    def listener_count(self, message_type: str) -> int:
        return len(self.handlers.get(message_type, []))

    def requests(self, message_type: str) -> list[dict[str, Any]]:
        return [request for sent_type, request in self.sent if sent_type == message_type]

    def emit(self, message_type: str, payload: Any, *, kind: PayloadKind | None = None) -> None:
        envelope = PushEnvelope(type=message_type, kind=kind, payload=payload)
        for handler in list(self.handlers.get(message_type, [])):
            handler(envelope)


@dataclass
class FakePullApi:
    """Pull fallback double. ``gate`` holds every call until it is set."""

    balance: float = 0.0
    transactions: list[dict[str, Any]] = field(default_factory=list)
    error: Exception | None = None
    gate: asyncio.Event | None = None
    delay: float = 0.0
    balance_calls: int = 0
    transaction_calls: int = 0
    filters_seen: list[TransactionFilters | None] = field(default_factory=list)

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        elif self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def fetch_balance(self) -> float:
        self.balance_calls += 1
        await self._wait()
        return self.balance

    async def fetch_transactions(self, filters: TransactionFilters | None = None) -> list[Transaction]:
        self.transaction_calls += 1
        self.filters_seen.append(filters)
        await self._wait()
        return [Transaction.model_validate(item) for item in self.transactions]


@dataclass
class FakeSessionSignal:
    listeners: list[SessionListener] = field(default_factory=list)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self.listeners.append(listener)

        def _remove() -> None:
            self.listeners = [cand for cand in self.listeners if cand is not listener]

        return _remove

    def emit(self, event: SessionEvent) -> None:
        for listener in list(self.listeners):
            listener(event)


@dataclass
class Harness:
    """A controller wired to fakes, plus every channel it created."""

    controller: SessionController
    store: StateStore
    pull_api: FakePullApi
    channels: list[FakePushChannel]

    @property
    def channel(self) -> FakePushChannel:
        return self.channels[-1]


def make_config(**overrides: Any) -> SyncConfig:
    values: dict[str, Any] = {
        "balance_fallback_delay": FALLBACK_DELAY,
        "transactions_fallback_delay": FALLBACK_DELAY,
        "pull_timeout": 1.0,
    }
    values.update(overrides)
    return SyncConfig(**values)


def tx(tx_id: str, ts: float, **extra: Any) -> dict[str, Any]:
    return {"id": tx_id, "timestamp": ts, **extra}


@pytest.fixture
def pull_api() -> FakePullApi:
    return FakePullApi(balance=120.5, transactions=[tx("t1", 10), tx("t2", 5)])


@dataclass
class FakeChannelFactory:
    """Push channel factory that remembers every channel it built."""

    state: ConnectionState = ConnectionState.READY
    fail_connect: bool = False
    channels: list[FakePushChannel] = field(default_factory=list)

    def __call__(self, user_id: str) -> FakePushChannel:
        channel = FakePushChannel(user_id=user_id, state=self.state, fail_connect=self.fail_connect)
        self.channels.append(channel)
        return channel


@pytest.fixture
def channel_factory() -> FakeChannelFactory:
    return FakeChannelFactory()


@pytest.fixture
def make_harness(pull_api: FakePullApi) -> Callable[..., Harness]:
    def _make(
        *,
        channel_state: ConnectionState = ConnectionState.READY,
        fail_connect: bool = False,
        **config_overrides: Any,
    ) -> Harness:
        config = make_config(**config_overrides)
        store = StateStore()
        factory = FakeChannelFactory(state=channel_state, fail_connect=fail_connect)
        controller = SessionController(
            config,
            store=store,
            pull_api=pull_api,
            channel_factory=factory,
            topics=default_topics(config),
        )
        return Harness(controller=controller, store=store, pull_api=pull_api, channels=factory.channels)

    return _make


@pytest.fixture
def session_signal() -> FakeSessionSignal:
    return FakeSessionSignal()

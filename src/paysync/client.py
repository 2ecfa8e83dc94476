"""High-level async client: live balance and transaction feed."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from typing import Any, Generic, TypeVar

import aiohttp

from paysync._api.pull import PullApi, RestPullApi
from paysync._constants import TOPIC_BALANCE, TOPIC_TRANSACTIONS
from paysync._push import DisabledPushChannel, MqttPushChannel, PushChannel, PushChannelFactory
from paysync._transport import RestTransport, TokenProvider
from paysync.config import SyncConfig
from paysync.exceptions import PaySyncError
from paysync.lifecycle import SessionController
from paysync.models.transaction import Transaction, TransactionFilters
from paysync.session import Session, SessionEvent, SessionSignal
from paysync.state.events import SyncSource
from paysync.state.store import StateStore
from paysync.topics import default_topics

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class TopicView(Generic[T]):
    """Read-only window on one topic.

    Unpacks as ``(value, is_loading, refresh)``::

        balance, loading, refresh = client.balance
    """

    def __init__(self, controller: SessionController, store: StateStore, topic: str) -> None:
        self._controller = controller
        self._store = store
        self._topic = topic

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def value(self) -> T:
        return self._store.value(self._topic)

    @property
    def is_loading(self) -> bool:
        return self._store.require(self._topic).is_loading

    @property
    def last_error(self) -> str | None:
        return self._store.require(self._topic).last_error

    @property
    def source(self) -> SyncSource | None:
        """Which side wrote the current value, ``None`` before the first write."""
        return self._store.require(self._topic).source

    def refresh(self, params: Any = None) -> None:
        self._controller.refresh(self._topic, params)

    def add_listener(self, listener: Callable[[TopicView[T]], None]) -> Callable[[], None]:
        """Call *listener(view)* after every change; returns an unsubscribe function."""
        return self._store.add_listener(self._topic, lambda _topic: listener(self))

    on_change = add_listener

    def __iter__(self) -> Iterator[Any]:
        return iter((self.value, self.is_loading, self.refresh))

    def __repr__(self) -> str:
        return f"TopicView({self._topic!r}, value={self.value!r}, is_loading={self.is_loading})"


class PaySyncClient:
    """Async facade over the sync core.

    Usage::

        async with PaySyncClient(config, token_provider=get_token) as client:
            client.login("user-1")
            balance, loading, refresh = client.balance
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        token_provider: TokenProvider,
        http_session: aiohttp.ClientSession | None = None,
        pull_api: PullApi | None = None,
        channel_factory: PushChannelFactory | None = None,
        transaction_filters: TransactionFilters | None = None,
    ) -> None:
        self._config = config
        self._token_provider = token_provider
        self._external_session = http_session is not None
        self._http_session = http_session
        self._pull_api = pull_api
        self._channel_factory = channel_factory
        self._transaction_filters = transaction_filters
        self._store = StateStore()
        self._controller: SessionController | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PaySyncClient:
        self._loop = asyncio.get_running_loop()
        pull_api = self._pull_api
        if pull_api is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            transport = RestTransport(self._config, self._http_session, self._token_provider)
            pull_api = RestPullApi(transport, transactions_limit=self._config.max_transactions)
        self._controller = SessionController(
            self._config,
            store=self._store,
            pull_api=pull_api,
            channel_factory=self._channel_factory or self._default_channel,
            topics=default_topics(self._config, filters=self._transaction_filters),
            loop=self._loop,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._controller is not None:
            self._controller.close()
            self._controller = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._loop = None

    def _default_channel(self, user_id: str) -> PushChannel:
        if not self._config.push_enabled:
            return DisabledPushChannel()
        return MqttPushChannel(
            config=self._config,
            user_id=user_id,
            token_provider=self._token_provider,
            loop=self._loop,
        )

    def _require_controller(self) -> SessionController:
        if self._controller is None:
            raise PaySyncError("Client not initialized. Use 'async with PaySyncClient(...) as client:'")
        return self._controller

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session | None:
        return self._require_controller().session

    def handle_session_event(self, event: SessionEvent) -> None:
        self._require_controller().handle(event)

    def attach_session_signal(self, signal: SessionSignal) -> None:
        """Follow login/logout events from an external identity layer."""
        self._require_controller().attach(signal)

    def login(self, user_id: str) -> None:
        self.handle_session_event(SessionEvent.logged_in(user_id))

    def logout(self) -> None:
        self.handle_session_event(SessionEvent.logged_out())

    # ------------------------------------------------------------------
    # Topic views
    # ------------------------------------------------------------------

    @property
    def balance(self) -> TopicView[float | None]:
        return TopicView(self._require_controller(), self._store, TOPIC_BALANCE)

    @property
    def transactions(self) -> TopicView[list[Transaction]]:
        return TopicView(self._require_controller(), self._store, TOPIC_TRANSACTIONS)

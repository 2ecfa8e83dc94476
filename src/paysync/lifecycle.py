"""Session lifecycle controller.

Observes ``LoggedIn``/``LoggedOut`` events and owns everything that lives for
one session: the push channel, the reconciler and the subscription registry.
Topic state objects outlive sessions; they are reset on login and cleared on
logout so consumer views stay valid.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from paysync._api.pull import PullApi
from paysync._push import PushChannel, PushChannelFactory
from paysync.config import SyncConfig
from paysync.exceptions import PushChannelError
from paysync.reconciler import SnapshotReconciler
from paysync.registry import SubscriptionRegistry
from paysync.session import Session, SessionEvent, SessionEventKind, SessionSignal
from paysync.state.events import TopicKind
from paysync.state.merge import MergeEngine
from paysync.state.store import CollectionState, StateStore
from paysync.topics import TopicSpec

_logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Everything created for one authenticated session."""

    session: Session
    channel: PushChannel
    reconciler: SnapshotReconciler
    registry: SubscriptionRegistry
    active: bool = True


class SessionController:
    """Drives setup and teardown of the sync core from session events.

    Usage::

        controller = SessionController(config, store=store, pull_api=api,
                                       channel_factory=factory, topics=specs)
        controller.handle(SessionEvent.logged_in("user-1"))
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        store: StateStore,
        pull_api: PullApi,
        channel_factory: PushChannelFactory,
        topics: Iterable[TopicSpec],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._merge = MergeEngine(store)
        self._pull_api = pull_api
        self._channel_factory = channel_factory
        self._loop = loop
        self._topics: dict[str, TopicSpec] = {spec.name: spec for spec in topics}
        self._params: dict[str, Any] = {name: spec.default_params for name, spec in self._topics.items()}
        self._context: SessionContext | None = None
        self._epoch = 0
        self._detach: Callable[[], None] | None = None

        for spec in self._topics.values():
            if store.get(spec.name) is None:
                store.register(spec.name, spec.kind, max_items=spec.max_items)
        store.clear_for_logout()

    @property
    def session(self) -> Session | None:
        ctx = self._context
        return ctx.session if ctx is not None else None

    @property
    def registry(self) -> SubscriptionRegistry | None:
        ctx = self._context
        return ctx.registry if ctx is not None else None

    @property
    def topics(self) -> list[str]:
        return list(self._topics)

    def params(self, topic: str) -> Any:
        return self._params.get(topic)

    def _is_live(self, epoch: int) -> bool:
        ctx = self._context
        return ctx is not None and ctx.active and ctx.session.epoch == epoch

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def handle(self, event: SessionEvent) -> None:
        if event.kind == SessionEventKind.LOGGED_IN:
            assert event.user_id is not None  # noqa: S101
            self._on_logged_in(event.user_id)
        else:
            self._on_logged_out()

    def attach(self, signal: SessionSignal) -> None:
        """Listen to *signal* until :meth:`close` (or the next ``attach``)."""
        self.detach()
        self._detach = signal.subscribe(self.handle)

    def detach(self) -> None:
        detach = self._detach
        self._detach = None
        if detach is not None:
            detach()

    def close(self) -> None:
        self.detach()
        self._on_logged_out()

    def _on_logged_in(self, user_id: str) -> None:
        current = self._context
        if current is not None:
            if current.session.user_id == user_id:
                _logger.debug("Already logged in as %s, ignoring", user_id)
                return
            _logger.debug("Switching user, tearing down session for %s", current.session.user_id)
            self._teardown()

        self._epoch += 1
        epoch = self._epoch
        session = Session(user_id=user_id, epoch=epoch)
        channel = self._channel_factory(user_id)
        reconciler = SnapshotReconciler(
            store=self._store,
            merge=self._merge,
            channel=channel,
            pull_api=self._pull_api,
            pull_timeout=self._config.pull_timeout,
            is_live=lambda: self._is_live(epoch),
            loop=self._loop,
        )
        registry = SubscriptionRegistry(
            session=session,
            channel=channel,
            reconciler=reconciler,
            specs=self._topics,
        )
        self._context = SessionContext(session=session, channel=channel, reconciler=reconciler, registry=registry)
        _logger.debug("Session %d started for %s", epoch, user_id)

        self._store.reset_for_login()
        for topic in self._topics:
            self._subscribe(registry, topic)

    def _subscribe(self, registry: SubscriptionRegistry, topic: str) -> None:
        try:
            registry.ensure_subscribed(topic, self._params.get(topic))
        except PushChannelError as exc:
            _logger.warning("Push channel unavailable for %s, waiting for pull fallback: %s", topic, exc)

    def _on_logged_out(self) -> None:
        if self._context is not None:
            _logger.debug("Logging out %s", self._context.session.user_id)
            self._teardown()
        self._store.clear_for_logout()

    def _teardown(self) -> None:
        ctx = self._context
        self._context = None
        if ctx is None:
            return
        ctx.active = False
        ctx.registry.close()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, topic: str, params: Any = None) -> None:
        """Restart *topic*'s snapshot race, optionally with new parameters.

        New parameters are merged onto the previous ones. A collection is
        emptied when its parameters change so old rows never mix with the
        new filter's snapshot.
        """
        spec = self._topics.get(topic)
        if spec is None:
            raise KeyError(f"unknown topic: {topic}")

        previous = self._params.get(topic)
        merged = spec.merge_params(previous, params)
        self._params[topic] = merged

        ctx = self._context
        if ctx is None or not ctx.active:
            _logger.debug("No active session, not refreshing %s", topic)
            return

        if merged != previous and spec.kind == TopicKind.COLLECTION:
            state = self._store.require(topic)
            if isinstance(state, CollectionState):
                state.items = []
                self._store.notify(topic)

        ctx.registry.unsubscribe(topic)
        self._subscribe(ctx.registry, topic)

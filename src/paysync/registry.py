"""Subscription registry.

Owns the per-session topic subscriptions and the shared push channel:

- ``ensure_subscribed`` is idempotent and never blocks; while the channel is
  not ready the listener registration is queued and flushed on ``READY``
- every subscription starts a reconciler round (fallback timer armed) before
  the push side is touched, so a dead channel still ends in a pull
- ``unsubscribe`` releases everything the subscription acquired and is a
  no-op for unknown topics
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from paysync._push import PushChannel
from paysync.exceptions import PushChannelError
from paysync.models.envelope import PushEnvelope
from paysync.reconciler import SnapshotReconciler
from paysync.session import Session
from paysync.state.events import ConnectionState, TopicPhase
from paysync.topics import TopicSpec, TopicSubscription

_logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    def __init__(
        self,
        *,
        session: Session,
        channel: PushChannel,
        reconciler: SnapshotReconciler,
        specs: Mapping[str, TopicSpec],
    ) -> None:
        self._session = session
        self._channel = channel
        self._reconciler = reconciler
        self._specs = dict(specs)
        self._subscriptions: dict[str, TopicSubscription] = {}
        self._pending: dict[str, TopicSubscription] = {}
        self._closed = False
        self._remove_state_listener = channel.add_state_listener(self._on_channel_state)
        session.connection_state = channel.state

    @property
    def active_topics(self) -> list[str]:
        return list(self._subscriptions)

    def subscription(self, topic: str) -> TopicSubscription | None:
        return self._subscriptions.get(topic)

    def is_queued(self, topic: str) -> bool:
        return topic in self._pending

    # ------------------------------------------------------------------
    # Subscribe / unsubscribe
    # ------------------------------------------------------------------

    def ensure_subscribed(self, topic: str, params: Any = None) -> None:
        """Subscribe to *topic* unless already subscribed.

        Raises :class:`PushChannelError` when the push channel cannot be
        opened; the subscription stays active and its fallback timer armed.
        """
        if self._closed:
            raise PushChannelError("subscription registry is closed")
        if topic in self._subscriptions:
            _logger.debug("Topic %s already subscribed", topic)
            return
        spec = self._specs.get(topic)
        if spec is None:
            raise KeyError(f"unknown topic: {topic}")

        sub = TopicSubscription(spec=spec, params=params if params is not None else spec.default_params)
        sub.transition(TopicPhase.SUBSCRIBING)
        self._subscriptions[topic] = sub
        self._reconciler.begin(sub)

        if self._channel.state == ConnectionState.READY:
            self._register(sub)
            return

        _logger.debug("Push channel %s, queueing %s registration", self._channel.state, topic)
        self._pending[topic] = sub
        if self._channel.state == ConnectionState.DISCONNECTED:
            self._channel.connect()

    def _register(self, sub: TopicSubscription) -> None:
        if sub.listening or not sub.is_active:
            return

        def _handler(envelope: PushEnvelope) -> None:
            self._reconciler.on_push(sub, envelope)

        try:
            for message_type in sub.spec.message_types:
                sub.resources.callback(self._channel.subscribe(message_type, _handler))
        except PushChannelError:
            _logger.warning("Could not register %s listeners", sub.topic, exc_info=True)
            return
        sub.listening = True
        _logger.debug("Registered %s listeners for %s", sub.topic, ", ".join(sub.spec.message_types))
        self._reconciler.request_initial(sub)

    def unsubscribe(self, topic: str) -> None:
        sub = self._subscriptions.pop(topic, None)
        self._pending.pop(topic, None)
        if sub is None:
            return
        self._reconciler.cancel(sub)
        _logger.debug("Unsubscribed %s", topic)

    def close(self) -> None:
        """Unsubscribe every topic and close the push channel."""
        if self._closed:
            return
        self._closed = True
        for topic in list(self._subscriptions):
            self.unsubscribe(topic)
        self._remove_state_listener()
        try:
            self._channel.close()
        except Exception:
            _logger.debug("Push channel close failed", exc_info=True)
        self._session.connection_state = ConnectionState.DISCONNECTED

    # ------------------------------------------------------------------
    # Channel readiness
    # ------------------------------------------------------------------

    def _on_channel_state(self, state: ConnectionState) -> None:
        if self._closed:
            return
        self._session.connection_state = state
        if state != ConnectionState.READY:
            return

        pending = list(self._pending.values())
        self._pending.clear()
        for sub in pending:
            self._register(sub)

        # Reconnected: topics still waiting for their snapshot ask again.
        flushed = {sub.topic for sub in pending}
        for topic, sub in self._subscriptions.items():
            if topic in flushed or not sub.listening:
                continue
            if sub.phase == TopicPhase.AWAITING_SNAPSHOT:
                self._reconciler.request_initial(sub)

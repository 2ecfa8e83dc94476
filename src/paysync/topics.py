"""Topic definitions and per-session topic subscriptions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from paysync._constants import (
    MSG_BALANCE_UPDATE,
    MSG_INITIAL_TRANSACTIONS,
    MSG_TRANSACTION_UPDATE,
    REQ_BALANCE,
    REQ_INITIAL_TRANSACTIONS,
    TOPIC_BALANCE,
    TOPIC_TRANSACTIONS,
)
from paysync.config import SyncConfig
from paysync.models.envelope import PayloadKind, PushEnvelope
from paysync.models.transaction import TransactionFilters
from paysync.state.events import SyncSource, TopicKind, TopicPhase
from paysync.state.policy import can_transition

if TYPE_CHECKING:
    from paysync._api.pull import PullApi

_logger = logging.getLogger(__name__)

Fetcher = Callable[["PullApi", Any], Awaitable[Any]]


async def _fetch_balance(api: PullApi, _params: Any) -> Any:
    return await api.fetch_balance()


async def _fetch_transactions(api: PullApi, params: Any) -> Any:
    return await api.fetch_transactions(params if isinstance(params, TransactionFilters) else None)


def _no_params(_params: Any) -> dict[str, Any]:
    return {}


def _filters_request(params: Any) -> dict[str, Any]:
    if isinstance(params, TransactionFilters):
        return {"filters": params.to_request()}
    return {}


def _merge_filters(previous: Any, new: Any) -> Any:
    base = previous if isinstance(previous, TransactionFilters) else TransactionFilters()
    if new is None:
        return base
    if not isinstance(new, TransactionFilters):
        new = TransactionFilters.model_validate(new)
    return base.merged(new)


def _keep_params(previous: Any, _new: Any) -> Any:
    return previous


@dataclass(frozen=True)
class TopicSpec:
    """Static description of one logical data stream.

    ``message_types`` are the push message types routed to the topic;
    ``snapshot_types`` is the subset that always carries a full snapshot.
    """

    name: str
    kind: TopicKind
    message_types: tuple[str, ...]
    request_type: str
    fallback_delay: float
    fetch: Fetcher
    snapshot_types: frozenset[str] = frozenset()
    build_request: Callable[[Any], dict[str, Any]] = _no_params
    merge_params: Callable[[Any, Any], Any] = _keep_params
    default_params: Any = None
    max_items: int = 50

    def classify(self, envelope: PushEnvelope) -> PayloadKind | None:
        """Decide whether a pushed message is a snapshot or a delta.

        Scalars are always full values. For collections an explicit ``kind``
        wins, then snapshot-only message types, then the payload shape.
        ``None`` means the payload cannot be interpreted.
        """
        if self.kind == TopicKind.SCALAR:
            return PayloadKind.SNAPSHOT
        if envelope.kind is not None:
            return envelope.kind
        if envelope.type in self.snapshot_types:
            return PayloadKind.SNAPSHOT
        if isinstance(envelope.payload, list):
            return PayloadKind.SNAPSHOT
        if isinstance(envelope.payload, dict):
            return PayloadKind.DELTA
        return None


def balance_topic(config: SyncConfig) -> TopicSpec:
    return TopicSpec(
        name=TOPIC_BALANCE,
        kind=TopicKind.SCALAR,
        message_types=(MSG_BALANCE_UPDATE,),
        request_type=REQ_BALANCE,
        fallback_delay=config.balance_fallback_delay,
        fetch=_fetch_balance,
    )


def transactions_topic(config: SyncConfig, filters: TransactionFilters | None = None) -> TopicSpec:
    return TopicSpec(
        name=TOPIC_TRANSACTIONS,
        kind=TopicKind.COLLECTION,
        message_types=(MSG_INITIAL_TRANSACTIONS, MSG_TRANSACTION_UPDATE),
        snapshot_types=frozenset({MSG_INITIAL_TRANSACTIONS}),
        request_type=REQ_INITIAL_TRANSACTIONS,
        fallback_delay=config.transactions_fallback_delay,
        fetch=_fetch_transactions,
        build_request=_filters_request,
        merge_params=_merge_filters,
        default_params=filters or TransactionFilters(),
        max_items=config.max_transactions,
    )


def default_topics(config: SyncConfig, *, filters: TransactionFilters | None = None) -> list[TopicSpec]:
    return [balance_topic(config), transactions_topic(config, filters)]


@dataclass
class TopicSubscription:
    """Interest in one topic for one session.

    Every resource acquired for the subscription (listener registrations,
    the fallback timer, an in-flight pull) is pushed onto ``resources`` and
    released by :meth:`release`, whichever path ends the subscription.
    """

    spec: TopicSpec
    params: Any = None
    phase: TopicPhase = TopicPhase.IDLE
    is_active: bool = True
    snapshot_applied: bool = False
    applied_source: SyncSource | None = None
    round_id: int = 0
    listening: bool = False
    pending_fallback: asyncio.TimerHandle | None = None
    pending_pull: asyncio.Task[None] | None = None
    buffered_deltas: deque[Any] = field(default_factory=deque)
    resources: contextlib.ExitStack = field(default_factory=contextlib.ExitStack)

    @property
    def topic(self) -> str:
        return self.spec.name

    def transition(self, target: TopicPhase) -> bool:
        if self.phase == target:
            return True
        if not can_transition(self.phase, target):
            _logger.warning("Refusing %s transition %s -> %s", self.topic, self.phase, target)
            return False
        _logger.debug("Topic %s: %s -> %s", self.topic, self.phase, target)
        self.phase = target
        return True

    def buffer_delta(self, payload: Any) -> None:
        if len(self.buffered_deltas) >= self.spec.max_items:
            self.buffered_deltas.popleft()
        self.buffered_deltas.append(payload)

    def cancel_fallback(self) -> None:
        handle = self.pending_fallback
        self.pending_fallback = None
        if handle is not None:
            handle.cancel()

    def release(self) -> None:
        """Deactivate and release every acquired resource. Safe to call twice."""
        self.is_active = False
        self.cancel_fallback()
        task = self.pending_pull
        self.pending_pull = None
        if task is not None and not task.done():
            task.cancel()
        self.buffered_deltas.clear()
        self.listening = False
        try:
            self.resources.close()
        finally:
            self.transition(TopicPhase.IDLE)

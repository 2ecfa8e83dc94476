"""Snapshot reconciler: push snapshot vs. timed pull fallback.

For every subscription round:

1. the initial-data request goes out over the push channel and a fallback
   timer is armed;
2. a pushed snapshot is applied immediately and cancels the timer;
3. when the timer fires first, the pull API is queried; its result is written
   only if no snapshot has landed in the meantime, checked right before the
   write;
4. a pull failure is recorded in ``last_error`` without touching existing
   values, and is ignored entirely if a push snapshot already arrived.

Every timer callback and async completion re-checks that the subscription is
still active, still on the same round and still part of the live session
before writing anything.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from paysync._api.pull import PullApi
from paysync._push import PushChannel
from paysync._redact import redact_for_log
from paysync.exceptions import PushChannelError
from paysync.models.envelope import PayloadKind, PushEnvelope
from paysync.state.events import SyncSource, TopicKind, TopicPhase
from paysync.state.merge import MergeEngine
from paysync.state.policy import should_apply_snapshot
from paysync.state.store import StateStore
from paysync.topics import TopicSubscription

_logger = logging.getLogger(__name__)


class SnapshotReconciler:
    """Runs the push-vs-pull race for each subscription round of one session.

    The registry calls :meth:`begin` and :meth:`request_initial` when a topic
    is subscribed and routes channel messages to :meth:`on_push`. Writes go
    through the :class:`MergeEngine`; ``is_live`` reports whether the owning
    session is still the current one.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        merge: MergeEngine,
        channel: PushChannel,
        pull_api: PullApi,
        pull_timeout: float,
        is_live: Callable[[], bool],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._store = store
        self._merge = merge
        self._channel = channel
        self._pull_api = pull_api
        self._pull_timeout = pull_timeout
        self._is_live = is_live
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _is_current(self, sub: TopicSubscription, round_id: int) -> bool:
        return sub.is_active and sub.round_id == round_id and self._is_live()

    # ------------------------------------------------------------------
    # Round start
    # ------------------------------------------------------------------

    def begin(self, sub: TopicSubscription) -> None:
        """Start a new race round: mark loading and arm the fallback timer."""
        sub.round_id += 1
        sub.snapshot_applied = False
        sub.applied_source = None
        sub.buffered_deltas.clear()
        sub.transition(TopicPhase.AWAITING_SNAPSHOT)

        state = self._store.require(sub.topic)
        state.is_loading = True
        state.last_error = None
        self._store.notify(sub.topic)

        self._arm_fallback(sub)

    def _arm_fallback(self, sub: TopicSubscription) -> None:
        sub.cancel_fallback()
        round_id = sub.round_id
        handle = self._get_loop().call_later(
            sub.spec.fallback_delay,
            self._on_fallback_timer,
            sub,
            round_id,
        )
        sub.pending_fallback = handle
        sub.resources.callback(handle.cancel)
        _logger.debug("Armed %s fallback in %.1fs (round %d)", sub.topic, sub.spec.fallback_delay, round_id)

    def request_initial(self, sub: TopicSubscription) -> bool:
        """Send the topic's initial-data request over the push channel."""
        request = sub.spec.build_request(sub.params)
        try:
            sent = self._channel.send(sub.spec.request_type, request)
        except PushChannelError as exc:
            _logger.debug("Initial %s request not sent: %s", sub.topic, exc)
            return False
        _logger.debug("Requested initial %s (sent=%s)", sub.topic, sent)
        return sent

    # ------------------------------------------------------------------
    # Push path
    # ------------------------------------------------------------------

    def on_push(self, sub: TopicSubscription, envelope: PushEnvelope) -> None:
        if not sub.is_active or not self._is_live():
            _logger.debug("Ignoring %s message for inactive %s", envelope.type, sub.topic)
            return

        kind = sub.spec.classify(envelope)
        if kind is None:
            _logger.warning(
                "Unexpected payload format for %s (%s): %s",
                sub.topic,
                envelope.type,
                redact_for_log(envelope.payload),
            )
            return

        # Once synced, a scalar value is a plain replacement update.
        if kind == PayloadKind.SNAPSHOT and not (sub.spec.kind == TopicKind.SCALAR and sub.phase == TopicPhase.SYNCED):
            self._apply_push_snapshot(sub, envelope.payload)
            return

        if sub.phase == TopicPhase.SYNCED:
            self._merge.apply_update(sub.topic, envelope.payload)
        else:
            _logger.debug("Buffering %s delta until the initial snapshot lands", sub.topic)
            sub.buffer_delta(envelope.payload)

    def _apply_push_snapshot(self, sub: TopicSubscription, payload: Any) -> None:
        if not should_apply_snapshot(
            incoming=SyncSource.PUSH,
            snapshot_applied=sub.snapshot_applied,
            applied_source=sub.applied_source,
        ):
            return
        if not self._merge.apply_snapshot(sub.topic, payload, source=SyncSource.PUSH):
            return
        sub.cancel_fallback()
        self._complete_round(sub, SyncSource.PUSH)

    # ------------------------------------------------------------------
    # Pull path
    # ------------------------------------------------------------------

    def _on_fallback_timer(self, sub: TopicSubscription, round_id: int) -> None:
        if not self._is_current(sub, round_id):
            return
        sub.pending_fallback = None
        if sub.snapshot_applied:
            return
        _logger.debug("No pushed %s snapshot after %.1fs, pulling", sub.topic, sub.spec.fallback_delay)
        task = self._get_loop().create_task(self._run_fallback(sub, round_id))
        sub.pending_pull = task
        sub.resources.callback(task.cancel)

    async def _run_fallback(self, sub: TopicSubscription, round_id: int) -> None:
        try:
            result = await asyncio.wait_for(sub.spec.fetch(self._pull_api, sub.params), self._pull_timeout)
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            self._on_fallback_error(sub, round_id, f"{sub.topic} request timed out after {self._pull_timeout:.0f}s")
            return
        except Exception as exc:
            _logger.debug("Pull fallback for %s failed", sub.topic, exc_info=True)
            self._on_fallback_error(sub, round_id, str(exc) or type(exc).__name__)
            return
        finally:
            if sub.round_id == round_id:
                sub.pending_pull = None

        if not self._is_current(sub, round_id):
            _logger.debug("Discarding %s pull result from a finished round", sub.topic)
            return
        if not should_apply_snapshot(
            incoming=SyncSource.PULL,
            snapshot_applied=sub.snapshot_applied,
            applied_source=sub.applied_source,
        ):
            _logger.debug("Discarding %s pull result, snapshot already applied", sub.topic)
            return
        if not self._merge.apply_snapshot(sub.topic, result, source=SyncSource.PULL):
            self._on_fallback_error(sub, round_id, f"unexpected {sub.topic} response")
            return
        self._complete_round(sub, SyncSource.PULL)

    def _on_fallback_error(self, sub: TopicSubscription, round_id: int, message: str) -> None:
        if not self._is_current(sub, round_id):
            return
        if sub.snapshot_applied:
            _logger.debug("Ignoring %s pull error after snapshot: %s", sub.topic, message)
            return
        _logger.warning("Pull fallback for %s failed: %s", sub.topic, message)
        state = self._store.require(sub.topic)
        state.last_error = message
        state.is_loading = False
        self._store.notify(sub.topic)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _complete_round(self, sub: TopicSubscription, source: SyncSource) -> None:
        first = not sub.snapshot_applied
        sub.snapshot_applied = True
        sub.applied_source = source

        state = self._store.require(sub.topic)
        state.is_loading = False
        state.last_error = None

        if first:
            sub.transition(TopicPhase.SYNCED)
            _logger.debug("Topic %s synced from %s", sub.topic, source)
            buffered = list(sub.buffered_deltas)
            sub.buffered_deltas.clear()
            for payload in buffered:
                self._merge.apply_update(sub.topic, payload)
        self._store.notify(sub.topic)

    def cancel(self, sub: TopicSubscription) -> None:
        sub.release()

"""Deterministic race and transition policy.

This module intentionally contains *no* payload parsing. It only answers
"may this write happen?" and "may the topic move to that phase?".
"""

from __future__ import annotations

from paysync.state.events import SyncSource, TopicPhase

_TRANSITIONS: dict[TopicPhase, frozenset[TopicPhase]] = {
    TopicPhase.IDLE: frozenset({TopicPhase.SUBSCRIBING}),
    TopicPhase.SUBSCRIBING: frozenset({TopicPhase.AWAITING_SNAPSHOT, TopicPhase.IDLE}),
    TopicPhase.AWAITING_SNAPSHOT: frozenset({TopicPhase.SYNCED, TopicPhase.IDLE}),
    TopicPhase.SYNCED: frozenset({TopicPhase.IDLE}),
}


def can_transition(current: TopicPhase, target: TopicPhase) -> bool:
    """Whether a topic may move from *current* to *target*."""
    return target in _TRANSITIONS[current]


def source_priority(source: SyncSource) -> int:
    """Higher wins: push is fresher than a point-in-time pull."""
    priorities: dict[SyncSource, int] = {
        SyncSource.PUSH: 50,
        SyncSource.PULL: 10,
    }
    return priorities.get(source, 0)


def should_apply_snapshot(*, incoming: SyncSource, snapshot_applied: bool, applied_source: SyncSource | None) -> bool:
    """Decide whether a snapshot may be written.

    Policy:
    - The first snapshot of a round always wins.
    - After that only an equal-or-higher priority source may overwrite, so a
      late push snapshot replaces a pull result but a slow pull never
      replaces anything.
    """
    if not snapshot_applied or applied_source is None:
        return True
    if incoming == SyncSource.PULL:
        return False
    return source_priority(incoming) >= source_priority(applied_source)

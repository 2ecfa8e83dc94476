"""Enumerations shared by the synchronization layers."""

from __future__ import annotations

from enum import StrEnum


class SyncSource(StrEnum):
    PUSH = "push"
    PULL = "pull"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


class TopicPhase(StrEnum):
    """Per-topic lifecycle: ``IDLE → SUBSCRIBING → AWAITING_SNAPSHOT → SYNCED``."""

    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    AWAITING_SNAPSHOT = "awaiting_snapshot"
    SYNCED = "synced"


class TopicKind(StrEnum):
    SCALAR = "scalar"
    COLLECTION = "collection"

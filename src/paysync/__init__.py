"""paysync - live balance and transaction feed synchronization core."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("paysync")
except PackageNotFoundError:
    __version__ = "0+local"
from paysync.client import PaySyncClient, TopicView
from paysync.config import SyncConfig
from paysync.exceptions import (
    ApiError,
    AuthenticationError,
    ConfigError,
    PayloadError,
    PaySyncError,
    PushChannelError,
    TransportError,
)
from paysync.lifecycle import SessionContext, SessionController
from paysync.models import (
    BalanceUpdate,
    PayloadKind,
    PushEnvelope,
    Transaction,
    TransactionFilters,
)
from paysync.registry import SubscriptionRegistry
from paysync.reconciler import SnapshotReconciler
from paysync.session import Session, SessionEvent, SessionEventKind, SessionSignal
from paysync.state.events import ConnectionState, SyncSource, TopicKind, TopicPhase
from paysync.state.merge import MergeEngine
from paysync.state.store import CollectionState, ScalarState, StateStore

__all__ = [
    "ApiError",
    "AuthenticationError",
    "BalanceUpdate",
    "CollectionState",
    "ConfigError",
    "ConnectionState",
    "MergeEngine",
    "PaySyncClient",
    "PaySyncError",
    "PayloadError",
    "PayloadKind",
    "PushChannelError",
    "PushEnvelope",
    "ScalarState",
    "Session",
    "SessionContext",
    "SessionController",
    "SessionEvent",
    "SessionEventKind",
    "SessionSignal",
    "SnapshotReconciler",
    "StateStore",
    "SubscriptionRegistry",
    "SyncConfig",
    "SyncSource",
    "TopicKind",
    "TopicPhase",
    "TopicView",
    "Transaction",
    "TransactionFilters",
    "TransportError",
    "__version__",
]

"""Session state and session-signal events."""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import StrEnum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from paysync.state.events import ConnectionState


class SessionEventKind(StrEnum):
    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"


class SessionEvent(BaseModel):
    """``LoggedIn(user_id)`` or ``LoggedOut`` as emitted by the identity layer."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    kind: SessionEventKind
    user_id: str | None = None

    @classmethod
    def logged_in(cls, user_id: str) -> SessionEvent:
        return cls(kind=SessionEventKind.LOGGED_IN, user_id=user_id)

    @classmethod
    def logged_out(cls) -> SessionEvent:
        return cls(kind=SessionEventKind.LOGGED_OUT)

    @model_validator(mode="after")
    def _require_user_on_login(self) -> SessionEvent:
        if self.kind == SessionEventKind.LOGGED_IN and not self.user_id:
            raise ValueError("LoggedIn requires a user_id")
        return self


SessionListener = Callable[[SessionEvent], None]


class SessionSignal(Protocol):
    """External login/logout signal. This package only listens to it."""

    def subscribe(self, listener: SessionListener) -> Callable[[], None]: ...


class Session(BaseModel):
    """One authenticated lifecycle, from ``LoggedIn`` to ``LoggedOut``.

    Parameters
    ----------
    user_id : str
        The authenticated user's id.
    epoch : int
        Sequence number of this session within its controller. Async
        completions compare it against the active session before writing.
    connection_state : ConnectionState
        Last known state of the shared push channel.
    started_at : float
        ``time.monotonic()`` when the session was created.
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
    )

    user_id: str
    epoch: int
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    started_at: float = Field(default_factory=time.monotonic)

    @field_validator("user_id")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("user_id must be non-empty")
        return value

    @property
    def age(self) -> float:
        """Seconds since the session was created."""
        return time.monotonic() - self.started_at
